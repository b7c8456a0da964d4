# python imports:
import logging
from typing import Any

# loopback_smtp imports:
from event_handling import SyncServer
from mock_server import MockServerBase, SessionRecorder, SessionResult
from transport import SyncTransport

logger = logging.getLogger ( __name__ )


class Session ( SessionRecorder, SyncServer ):
	def __init__ ( self,
		transport: SyncTransport,
		server: MockServerBase,
		connection: Any,
		peer: Any = None,
	) -> None:
		super().__init__ ( transport, server.make_protocol() )
		self.server = server
		self.connection = connection
		self.result = SessionResult ( peer )
	
	def run ( self ) -> SessionResult: # type: ignore[override]
		outcome, error = super().run()
		return self.finish ( outcome, error )
