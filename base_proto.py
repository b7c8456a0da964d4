from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import binascii
import enum
import logging
import re
from types import TracebackType
from typing import (
	Generator, Iterator, Optional as Opt, Sequence as Seq, Tuple, Type, Union,
)

# loopback_smtp imports:
from util import bytes_types, BYTES

logger = logging.getLogger ( __name__ )

EXC_INFO = Opt[Union[
	Tuple[Type[BaseException],BaseException,TracebackType],
	Tuple[None,None,None],
]]

LINE_TERMINATOR = b'\r\n'
BODY_TERMINATOR = b'\r\n.\r\n' # a line consisting solely of '.'

_r_eol = re.compile ( r'[\r\n]' )


class Event ( Exception ):
	exc_info: EXC_INFO = None

	def go ( self ) -> Iterator[Event]:
		yield self

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'


class Closed ( Exception ):
	def __init__ ( self, reason: str = '' ) -> None:
		self.reason = reason or '(none given)'
		super().__init__ ( self.reason )


class ProtocolError ( Exception ):
	pass


class BufferOverflow ( ProtocolError ):
	pass


class MalformedInput ( ProtocolError ):
	# the peer broke the contract of the test harness (no HELO, AUTH w/o mechanism, unparseable DATA)
	pass


class Outcome ( enum.Enum ):
	QUIT = 'quit'
	END_OF_STREAM = 'end-of-stream'
	MALFORMED_INPUT = 'malformed-input'
	TRANSPORT_FAILURE = 'transport-failure'
	BUFFER_OVERFLOW = 'buffer-overflow'
	INTERNAL_ERROR = 'internal-error'


def outcome_for ( exc: BaseException ) -> Tuple[Outcome,Opt[BaseException]]:
	'''
	map the exception that ended a session to its Outcome and the underlying error (if any)
	'''
	if isinstance ( exc, Closed ):
		if exc.__cause__ is None:
			if exc.reason == 'QUIT':
				return Outcome.QUIT, None
			return Outcome.END_OF_STREAM, None
		exc = exc.__cause__
	if isinstance ( exc, BufferOverflow ):
		return Outcome.BUFFER_OVERFLOW, exc
	if isinstance ( exc, ( MalformedInput, UnicodeError, binascii.Error ) ):
		return Outcome.MALFORMED_INPUT, exc
	if isinstance ( exc, OSError ):
		return Outcome.TRANSPORT_FAILURE, exc
	return Outcome.INTERNAL_ERROR, exc


RequestProtocolGenerator = Generator[Event,None,None]


class BaseRequest ( metaclass = ABCMeta ):
	# this class is the basis of all server command handling
	# 1) server bypasses __init__() since requests are created from the wire
	# 2) _server_protocol() implements the server-side state machine for one command

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'

	@abstractmethod
	def _server_protocol ( self, server: ServerProtocol, command: str, argument: str ) -> RequestProtocolGenerator:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._server_protocol()' )


class NeedDataEvent ( Event ):
	data: Opt[bytes] = None

	def reset ( self ) -> NeedDataEvent:
		self.data = None
		return self

	def go ( self ) -> Iterator[Event]:
		self.reset()
		yield from super().go()


class SendDataEvent ( Event ):

	def __init__ ( self, *chunks: bytes ) -> None:
		self.chunks: Seq[bytes] = chunks

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(chunks={self.chunks!r})'


class FrameEvent ( Event ):

	def __init__ ( self, frame: bytes ) -> None:
		self.frame = frame

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(frame={self.frame!r})'


class Protocol ( metaclass = ABCMeta ):
	_buf: bytes = b''
	_MAXFRAME: int
	terminator: bytes = LINE_TERMINATOR
	request: Opt[BaseRequest] = None
	request_protocol: Opt[RequestProtocolGenerator] = None
	need_data: Opt[NeedDataEvent] = None

	def receive ( self, data: BYTES ) -> Iterator[Event]:
		log = logger.getChild ( 'Protocol.receive' )
		assert isinstance ( data, bytes_types ), f'invalid {data=}'
		if not data: # EOF indicator
			if self._buf:
				log.debug ( f'discarding incomplete frame at EOF: {self._buf!r}' )
				self._buf = b''
			raise Closed ( 'EOF' )
		self._buf += bytes ( data )
		start = 0
		try:
			# self.terminator is re-read every pass, a request may switch profiles between frames
			while ( pos := self._buf.find ( self.terminator, start ) ) >= 0:
				end = pos + len ( self.terminator )
				if end - start > self._MAXFRAME:
					raise BufferOverflow ( f'frame of {end-start} bytes exceeds {self._MAXFRAME} byte buffer' )
				frame = self._buf[start:pos]
				start = end
				yield from self._receive_frame ( frame )
		finally:
			if start:
				self._buf = self._buf[start:]
		if len ( self._buf ) >= self._MAXFRAME:
			raise BufferOverflow ( f'no {self.terminator!r} found within {self._MAXFRAME} byte buffer' )

	@abstractmethod
	def _receive_frame ( self, frame: bytes ) -> Iterator[Event]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._receive_frame()' )

	def _run_protocol ( self ) -> Iterator[Event]:
		log = logger.getChild ( 'Protocol._run_protocol' )
		assert self.request is not None, f'invalid {self.request=}'
		assert self.request_protocol is not None, f'invalid {self.request_protocol=}'
		try:
			while True:
				event = next ( self.request_protocol )
				log.debug ( f'{event=}' )
				if isinstance ( event, NeedDataEvent ):
					self.need_data = event.reset()
					return
				else:
					yield event
					if event.exc_info:
						self.request_protocol.throw ( event.exc_info[1] )
		except Closed:
			self.request = None
			self.request_protocol = None
			raise
		except SendDataEvent as event: # request finished with a final reply
			self.request = None
			self.request_protocol = None
			yield event
			if event.exc_info:
				raise Closed ( repr ( event.exc_info[1] ) ) from event.exc_info[1]
		except StopIteration:
			self.request = None
			self.request_protocol = None
		except Exception as e:
			self.request = None
			self.request_protocol = None
			if isinstance ( e, OSError ):
				log.debug ( f'transport error: {e!r}' )
			else:
				log.exception ( 'protocol error:' )
			raise Closed ( repr ( e ) ) from e


class ServerProtocol ( Protocol ):

	def __init__ ( self, hostname: str ) -> None:
		assert isinstance ( hostname, str ) and not _r_eol.search ( hostname ), f'invalid {hostname=}'
		self.hostname = hostname

	def startup ( self ) -> Iterator[Event]:
		# override this if server protocol needs to say "hi" first
		yield from ()

	@abstractmethod
	def _parse_request_line ( self, line: bytes ) -> Tuple[str,Type[BaseRequest],str]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._parse_request_line()' )

	def _receive_frame ( self, frame: bytes ) -> Iterator[Event]:
		#log = logger.getChild ( 'ServerProtocol._receive_frame' )
		yield from FrameEvent ( frame ).go()
		if self.need_data:
			self.need_data.data = frame
			self.need_data = None
			yield from self._run_protocol()
		else:
			assert self.request is None, 'server internal state error - not waiting for data but a request is active'
			command, requestcls, argument = self._parse_request_line ( frame )
			request: BaseRequest = requestcls.__new__ ( requestcls )
			self.request = request
			self.request_protocol = request._server_protocol ( self, command, argument )
			yield from self._run_protocol()
