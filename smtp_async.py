# python imports:
import logging
from typing import Any

# loopback_smtp imports:
from event_handling import AsyncServer
from mock_server import MockServerBase, SessionRecorder, SessionResult
from transport import AsyncTransport

logger = logging.getLogger ( __name__ )


class Session ( SessionRecorder, AsyncServer ):
	def __init__ ( self,
		transport: AsyncTransport,
		server: MockServerBase,
		connection: Any,
		peer: Any = None,
	) -> None:
		super().__init__ ( transport, server.make_protocol() )
		self.server = server
		self.connection = connection
		self.result = SessionResult ( peer )
	
	async def run ( self ) -> SessionResult: # type: ignore[override]
		outcome, error = await super().run()
		return self.finish ( outcome, error )
