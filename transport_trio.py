from __future__ import annotations

# python imports:
import logging
import trio # pip install trio

# loopback_smtp imports:
from transport import AsyncTransport
from util import BYTES

logger = logging.getLogger ( __name__ )


class TrioTransport ( AsyncTransport ):
	stream: trio.abc.Stream
	eof_timeout: float = 0.05
	
	def __init__ ( self, stream: trio.abc.Stream ) -> None:
		self.stream = stream
	
	async def read ( self ) -> bytes:
		#log = logger.getChild ( 'TrioTransport.read' )
		try:
			return await self.stream.receive_some ( self.read_size )
		except ( trio.BrokenResourceError, trio.ClosedResourceError ) as e:
			raise ConnectionError ( f'{type(self).__module__}.{type(self).__name__} read failed: {e!r}' ) from e
	
	async def write ( self, data: BYTES ) -> None:
		#log = logger.getChild ( 'TrioTransport.write' )
		try:
			await self.stream.send_all ( data ) # retries partial writes
		except ( trio.BrokenResourceError, trio.ClosedResourceError ) as e:
			raise ConnectionError ( f'{type(self).__module__}.{type(self).__name__} write failed: {e!r}' ) from e
	
	async def close ( self ) -> None:
		log = logger.getChild ( 'TrioTransport.close' )
		try:
			if isinstance ( self.stream, trio.abc.HalfCloseableStream ):
				with trio.move_on_after ( self.eof_timeout ):
					await self.stream.send_eof()
		except ( trio.BrokenResourceError, trio.ClosedResourceError, OSError ) as e:
			log.debug ( f'send_eof failed: {e!r}' )
		finally:
			await trio.aclose_forcefully ( self.stream )
