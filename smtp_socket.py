from __future__ import annotations

# python imports:
from functools import partial
import logging
import queue
import smtplib
import socket
import threading
from types import TracebackType
from typing import Any, List, Optional as Opt, Type

# loopback_smtp imports:
from mock_server import MockServerBase, SessionResult
import smtp_sync
from transport_socket import SocketTransport as Transport

logger = logging.getLogger ( __name__ )


class Session ( smtp_sync.Session ):
	@classmethod
	def from_transport ( cls: Type[Session],
		transport: Transport,
		address: Any,
		server: MockServerBase,
	) -> Session:
		return cls ( transport, server, transport.sock, address )


class MockSmtpServer ( MockServerBase ):
	'''
	loopback SMTP test double driven by blocking sockets and threads

	Construction binds 127.0.0.1 on an OS-assigned port (see .port) and starts
	accepting on a daemon thread; each accepted connection gets its own daemon
	thread running a Session. Use .create_client() to get an smtplib client
	for it, read the observed fields (or drain .results) afterwards, and
	close() the server (or use it as a context manager) when done.
	'''
	listen_backlog: int = 1
	accept_thread_name: str = 'MockSmtpAcceptThread'

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
		self.results: queue.Queue[SessionResult] = queue.Queue()
		self._transports: List[Transport] = []

		sock = socket.socket ( socket.AF_INET, socket.SOCK_STREAM )
		try:
			sock.bind ( ( '127.0.0.1', 0 ) )
			self.port = sock.getsockname()[1]
			sock.listen ( self.listen_backlog )
		except OSError:
			sock.close()
			raise
		self._listen_sock = sock

		self._accept_thread = threading.Thread (
			target = self._accept_loop,
			name = self.accept_thread_name,
			daemon = True,
		)
		self._accept_thread.start()

	def create_client ( self, **kwargs: Any ) -> smtplib.SMTP:
		return smtplib.SMTP ( '127.0.0.1', self.port, **kwargs )

	def _track ( self, transport: Transport ) -> bool:
		with self._lock:
			if not self._closed:
				self._transports.append ( transport )
				return True
		return False

	def _accept_loop ( self ) -> None:
		log = logger.getChild ( 'MockSmtpServer._accept_loop' )
		try:
			while True:
				sock, address = self._listen_sock.accept()
				transport = Transport ( sock )
				if not self._track ( transport ):
					log.debug ( f'closing connection from {address!r} accepted during close()' )
					sock.close()
					return
				self._connection_accepted()
				log.debug ( f'accepted connection #{self.connection_count} from {address!r}' )
				thread = threading.Thread (
					target = partial ( self._handle_connection, transport, address ),
					name = f'MockSmtpSessionThread-{self.connection_count}',
					daemon = True,
				)
				thread.start()
				if not self.receive_multiple_connections:
					break
		except OSError as e:
			if self._closed:
				log.debug ( f'listener closed: {e!r}' )
			else:
				log.exception ( 'accept failed:' )

	def _handle_connection ( self, transport: Transport, address: Any ) -> None:
		session = Session.from_transport ( transport, address, self )
		session.run()

	def _publish ( self, result: SessionResult ) -> None:
		self.results.put ( result )

	def close ( self ) -> None:
		log = logger.getChild ( 'MockSmtpServer.close' )
		with self._lock:
			if self._closed:
				return
			self._closed = True
			transports, self._transports = self._transports, []
		try:
			# shutdown() is what wakes a thread blocked in accept()
			self._listen_sock.shutdown ( socket.SHUT_RDWR )
		except OSError as e:
			log.debug ( f'listener shutdown failed: {e!r}' )
		finally:
			self._listen_sock.close()
		for xport in transports:
			xport.interrupt()

	def __enter__ ( self ) -> MockSmtpServer:
		return self

	def __exit__ ( self,
		exc_type: Opt[Type[BaseException]],
		exc_val: Opt[BaseException],
		exc_tb: Opt[TracebackType],
	) -> None:
		self.close()
