from __future__ import annotations

# python imports:
from abc import ABCMeta
import contextlib
import inspect
import logging
import sys
from typing import Iterator, Optional as Opt, Tuple

# loopback_smtp imports:
from base_proto import Event, SendDataEvent, ServerProtocol, Closed, Outcome, outcome_for
from transport import SyncTransport, AsyncTransport
from util import b2s

logger = logging.getLogger ( __name__ )


@contextlib.contextmanager
def _event_exception_safety ( event: Event ) -> Iterator[None]:
	try:
		yield
	except Exception:
		event.exc_info = sys.exc_info()

class SyncEventHandler:
	transport: SyncTransport

	def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'SyncEventHandler.on_SendDataEvent' )
		for chunk in event.chunks:
			log.debug ( f'S>{b2s(chunk,errors="replace").rstrip()}' )
			self.transport.write ( chunk )

	def _on_event ( self, event: Event ) -> None:
		#log = logger.getChild ( 'SyncEventHandler._on_event' )
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			func ( event )

	def close ( self ) -> None:
		self.transport.close()


class AsyncEventHandler:
	transport: AsyncTransport

	async def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'AsyncEventHandler.on_SendDataEvent' )
		for chunk in event.chunks:
			log.debug ( f'S>{b2s(chunk,errors="replace").rstrip()}' )
			await self.transport.write ( chunk )

	async def _on_event ( self, event: Event ) -> None:
		#log = logger.getChild ( 'AsyncEventHandler._on_event' )
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			result = func ( event )
			if inspect.isawaitable ( result ): # observation handlers are shared with the sync side
				await result

	async def close ( self ) -> None:
		await self.transport.close()


class Server ( metaclass = ABCMeta ):
	proto: ServerProtocol


@contextlib.contextmanager
def close_if_oserror() -> Iterator[None]:
	try:
		yield
	except OSError as e:
		raise Closed ( repr ( e ) ) from e

class SyncServer ( SyncEventHandler, Server ):
	def __init__ ( self,
		transport: SyncTransport,
		proto: ServerProtocol,
	) -> None:
		self.transport = transport
		self.proto = proto

	def run ( self ) -> Tuple[Outcome,Opt[BaseException]]:
		log = logger.getChild ( 'SyncServer.run' )
		try:
			for event in self.proto.startup():
				self._on_event ( event )

			while True:
				with close_if_oserror():
					data = self.transport.read()
				log.debug ( f'C>{b2s(data,errors="replace").rstrip()}' )
				for event in self.proto.receive ( data ):
					self._on_event ( event )
		except Exception as e:
			outcome, error = outcome_for ( e )
			log.debug ( f'connection closed with {outcome=} {error=}' )
			return outcome, error
		finally:
			self.close()


class AsyncServer ( AsyncEventHandler, Server ):
	def __init__ ( self,
		transport: AsyncTransport,
		proto: ServerProtocol,
	) -> None:
		self.transport = transport
		self.proto = proto

	async def run ( self ) -> Tuple[Outcome,Opt[BaseException]]:
		log = logger.getChild ( 'AsyncServer.run' )
		try:
			for event in self.proto.startup():
				await self._on_event ( event )

			while True:
				with close_if_oserror():
					data = await self.transport.read()
				log.debug ( f'C>{b2s(data,errors="replace").rstrip()}' )
				for event in self.proto.receive ( data ):
					await self._on_event ( event )
		except Exception as e:
			outcome, error = outcome_for ( e )
			log.debug ( f'connection closed with {outcome=} {error=}' )
			return outcome, error
		finally:
			await self.close()
