from __future__ import annotations

# python imports:
import logging
import socket

# loopback_smtp imports:
from transport import SyncTransport
from util import BYTES

logger = logging.getLogger ( __name__ )


class SocketTransport ( SyncTransport ):
	sock: socket.socket
	interrupted: bool = False

	def __init__ ( self, sock: socket.socket ) -> None:
		self.sock = sock

	def read ( self ) -> bytes:
		#log = logger.getChild ( 'SocketTransport.read' )
		data = self.sock.recv ( self.read_size )
		if not data and self.interrupted:
			# EOF manufactured by interrupt(), not sent by the peer
			raise ConnectionAbortedError ( 'connection torn down by the server' )
		return data

	def write ( self, data: BYTES ) -> None:
		#log = logger.getChild ( 'SocketTransport.write' )
		self.sock.sendall ( data ) # retries partial writes

	def interrupt ( self ) -> None:
		'''
		wake a session blocked on this socket; its next read or write fails
		'''
		log = logger.getChild ( 'SocketTransport.interrupt' )
		self.interrupted = True
		try:
			self.sock.shutdown ( socket.SHUT_RDWR )
		except OSError as e: # session already finished and closed it
			log.debug ( f'shutdown failed: {e!r}' )

	def close ( self ) -> None:
		log = logger.getChild ( 'SocketTransport.close' )
		try:
			self.sock.shutdown ( socket.SHUT_RDWR )
		except OSError as e: # already shut down, reset by peer, or interrupted
			log.debug ( f'shutdown failed: {e!r}' )
		finally:
			self.sock.close()
