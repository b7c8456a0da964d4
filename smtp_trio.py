from __future__ import annotations

# python imports:
import logging
import math
import trio # pip install trio
from typing import Any, List, Type

# loopback_smtp imports:
from base_proto import Outcome
from mock_server import MockServerBase, SessionResult
import smtp_async
from transport_trio import TrioTransport as Transport

logger = logging.getLogger ( __name__ )


class Session ( smtp_async.Session ):
	@classmethod
	def from_stream ( cls: Type[Session],
		stream: trio.SocketStream,
		server: MockServerBase,
	) -> Session:
		transport = Transport ( stream )
		try:
			peer = stream.socket.getpeername()
		except OSError:
			peer = None
		return cls ( transport, server, stream, peer )

	async def run ( self ) -> SessionResult:
		try:
			return await super().run()
		except trio.Cancelled:
			# MockSmtpServer.close() tore the connection down mid-session
			self.finish ( Outcome.TRANSPORT_FAILURE, None )
			raise


class MockSmtpServer ( MockServerBase ):
	'''
	trio flavor of smtp_socket.MockSmtpServer

	usage:
		async with trio.open_nursery() as nursery:
			server = MockSmtpServer()
			port = await nursery.start ( server.serve )
			stream = await server.open_stream()
			...
			result = await server.receive_result()
			server.close()
	'''
	listen_backlog: int = 1

	def __init__ ( self, *,
		receive_multiple_connections: bool = False,
		support_smtputf8: bool = False,
		hostname: str = 'localhost',
	) -> None:
		super().__init__ (
			receive_multiple_connections = receive_multiple_connections,
			support_smtputf8 = support_smtputf8,
			hostname = hostname,
		)
		self._cancel_scope = trio.CancelScope()
		self._streams: List[trio.SocketStream] = []
		self._send_results, self._receive_results = trio.open_memory_channel[SessionResult] ( math.inf )

	async def serve ( self, *, task_status: Any = trio.TASK_STATUS_IGNORED ) -> None:
		log = logger.getChild ( 'MockSmtpServer.serve' )
		with self._cancel_scope:
			listeners = await trio.open_tcp_listeners ( 0, host = '127.0.0.1', backlog = self.listen_backlog )
			listener = listeners[0]
			self.port = listener.socket.getsockname()[1]
			try:
				async with trio.open_nursery() as nursery:
					async with listener:
						task_status.started ( self.port )
						while True:
							stream = await listener.accept()
							self._streams.append ( stream )
							self._connection_accepted()
							log.debug ( f'accepted connection #{self.connection_count}' )
							nursery.start_soon ( self._handle_connection, stream )
							if not self.receive_multiple_connections:
								break
			finally:
				for stream in self._streams:
					await trio.aclose_forcefully ( stream )

	async def _handle_connection ( self, stream: trio.SocketStream ) -> None:
		session = Session.from_stream ( stream, self )
		await session.run()

	async def open_stream ( self ) -> trio.SocketStream:
		return await trio.open_tcp_stream ( '127.0.0.1', self.port )

	async def receive_result ( self ) -> SessionResult:
		return await self._receive_results.receive()

	def _publish ( self, result: SessionResult ) -> None:
		self._send_results.send_nowait ( result )

	def close ( self ) -> None:
		with self._lock:
			if self._closed:
				return
			self._closed = True
		self._cancel_scope.cancel()
