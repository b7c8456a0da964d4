# python imports:
import logging
from pathlib import Path
import sys
import trio # pip install trio
from typing import List
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# loopback_smtp imports:
from base_proto import Event, Outcome
import event_handling
import smtp_proto as proto
from transport import AsyncTransport, SyncTransport
from util import BYTES

logger = logging.getLogger ( __name__ )


class ScriptTransport ( SyncTransport ):
	def __init__ ( self, *reads: bytes ) -> None:
		self.reads = list ( reads )
		self.written: List[bytes] = []
		self.closed = False

	def read ( self ) -> bytes:
		return self.reads.pop ( 0 ) if self.reads else b''

	def write ( self, data: BYTES ) -> None:
		self.written.append ( bytes ( data ) )

	def close ( self ) -> None:
		self.closed = True


class AsyncScriptTransport ( AsyncTransport ):
	def __init__ ( self, *reads: bytes ) -> None:
		self.reads = list ( reads )
		self.written: List[bytes] = []
		self.closed = False

	async def read ( self ) -> bytes:
		await trio.sleep ( 0 )
		return self.reads.pop ( 0 ) if self.reads else b''

	async def write ( self, data: BYTES ) -> None:
		self.written.append ( bytes ( data ) )

	async def close ( self ) -> None:
		self.closed = True


class Observer:
	seen: List[str]

	def _seen ( self, event: Event ) -> None:
		self.seen.append ( type ( event ).__name__ )

	on_ConnectEvent = _seen
	on_FrameEvent = _seen
	on_CommandEvent = _seen
	on_HelloEvent = _seen
	on_QuitEvent = _seen


class SyncSession ( Observer, event_handling.SyncServer ):
	def __init__ ( self, xport: SyncTransport ) -> None:
		super().__init__ ( xport, proto.Server() )
		self.seen = []


class AsyncSession ( Observer, event_handling.AsyncServer ):
	def __init__ ( self, xport: AsyncTransport ) -> None:
		super().__init__ ( xport, proto.Server() )
		self.seen = []

	async def on_HelloEvent ( self, event: proto.HelloEvent ) -> None: # type: ignore[override]
		await trio.sleep ( 0 )
		self.seen.append ( f'hello {event.hello}' )


class Tests ( unittest.TestCase ):
	def test_coverage ( self ) -> None:
		with self.assertRaises ( event_handling.Closed ):
			try:
				with event_handling.close_if_oserror():
					raise OSError ( 'foo' )
			except event_handling.Closed as e:
				self.assertEqual ( repr ( e ), '''Closed("OSError('foo')")''' )
				raise

	def test_sync_server ( self ) -> None:
		test = self
		xport = ScriptTransport ( b'EHLO cli', b'ent\r\nQUIT\r\n' )
		session = SyncSession ( xport )
		test.assertEqual ( session.run(), ( Outcome.QUIT, None ) )
		test.assertTrue ( xport.closed )
		test.assertEqual ( xport.written, [
			b'220 localhost\r\n',
			b'250-localhost, mock server here\r\n250 AUTH PLAIN LOGIN NTLM\r\n',
			b'221 Bye\r\n',
		] )
		test.assertEqual ( session.seen, [
			'ConnectEvent',
			'FrameEvent', 'CommandEvent', 'HelloEvent',
			'FrameEvent', 'CommandEvent', 'QuitEvent',
		] )

		# peer hangs up without saying goodbye
		xport = ScriptTransport ( b'EHLO client\r\n' )
		test.assertEqual ( SyncSession ( xport ).run(), ( Outcome.END_OF_STREAM, None ) )
		test.assertTrue ( xport.closed )

	def test_sync_server_errors ( self ) -> None:
		test = self

		class Broken ( SyncSession ):
			def on_HelloEvent ( self, event: proto.HelloEvent ) -> None: # type: ignore[override]
				raise RuntimeError ( 'observer blew up' )
		xport = ScriptTransport ( b'EHLO client\r\n' )
		with test.assertLogs ( 'base_proto', level = 'ERROR' ):
			outcome, error = Broken ( xport ).run()
		test.assertIs ( outcome, Outcome.INTERNAL_ERROR )
		test.assertEqual ( repr ( error ), "RuntimeError('observer blew up')" )
		test.assertEqual ( xport.written, [ b'220 localhost\r\n' ] )
		test.assertTrue ( xport.closed )

		# a handler that does not exist fails the same way
		class Rude ( event_handling.SyncServer ):
			pass
		xport = ScriptTransport()
		with test.assertLogs ( 'base_proto', level = 'ERROR' ):
			outcome, error = Rude ( xport, proto.Server() ).run()
		test.assertIs ( outcome, Outcome.INTERNAL_ERROR )
		test.assertIsInstance ( error, AttributeError )
		test.assertEqual ( xport.written, [] )

		class Failing ( ScriptTransport ):
			def read ( self ) -> bytes:
				raise ConnectionResetError ( 'reset by peer' )
		xport = Failing()
		outcome, error = SyncSession ( xport ).run()
		test.assertIs ( outcome, Outcome.TRANSPORT_FAILURE )
		test.assertIsInstance ( error, ConnectionResetError )

		xport = ScriptTransport ( b'EHLO client\r\n', b'X' * 2048 )
		outcome, error = SyncSession ( xport ).run()
		test.assertIs ( outcome, Outcome.BUFFER_OVERFLOW )

	def test_async_server ( self ) -> None:
		test = self
		async def _test() -> None:
			xport = AsyncScriptTransport ( b'HELO client\r\nNOOP\r\n' )
			session = AsyncSession ( xport )

			def on_UnknownCommandEvent ( event: proto.UnknownCommandEvent ) -> None:
				session.seen.append ( f'unknown {event.line}' )
			session.on_UnknownCommandEvent = on_UnknownCommandEvent # type: ignore[attr-defined]

			test.assertEqual ( await session.run(), ( Outcome.END_OF_STREAM, None ) )
			test.assertTrue ( xport.closed )
			test.assertEqual ( xport.written, [
				b'220 localhost\r\n',
				b'250-localhost, mock server here\r\n250 AUTH PLAIN LOGIN NTLM\r\n',
				b'500 Idk that command\r\n',
			] )
			test.assertEqual ( session.seen, [
				'ConnectEvent',
				'FrameEvent', 'CommandEvent', 'hello client',
				'FrameEvent', 'CommandEvent', 'unknown NOOP',
			] )
		trio.run ( _test )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
