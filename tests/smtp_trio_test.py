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
from base_proto import Outcome
import smtp_trio
from util import b64_encode_str

logger = logging.getLogger ( __name__ )

TIMEOUT = 5.0

class Tests ( unittest.TestCase ):
	def test_client_server ( self ) -> None:
		test = self
		self.maxDiff = None

		async def _test() -> None:
			hellos: List[str] = []
			with trio.fail_after ( TIMEOUT ):
				async with trio.open_nursery() as nursery:
					server = smtp_trio.MockSmtpServer ( hostname = 'milliways.local', support_smtputf8 = True )
					server.on_hello_received = hellos.append
					port = await nursery.start ( server.serve )
					test.assertEqual ( port, server.port )
					stream = await server.open_stream()

					async def expect ( request: bytes, reply: bytes ) -> None:
						log = logger.getChild ( 'test_client_server.expect' )
						if request:
							log.debug ( f'C>{request!r}' )
							await stream.send_all ( request )
						got = b''
						while len ( got ) < len ( reply ):
							data = await stream.receive_some()
							if not data:
								break
							got += data
						test.assertEqual ( got, reply )

					await expect ( b'', b'220 milliways.local\r\n' )
					await expect ( b'EHLO zaphod\r\n',
						b'250-milliways.local, mock server here\r\n'
						b'250-SMTPUTF8\r\n'
						b'250 AUTH PLAIN LOGIN NTLM\r\n'
					)
					user = b64_encode_str ( 'zaphod' ).encode()
					await expect ( b'AUTH LOGIN ' + user + b'\r\n', b'334 UGFzc3dvcmQ6\r\n' )
					await expect ( b64_encode_str ( 'beeblebrox' ).encode() + b'\r\n', b'235 Authentication successful\r\n' )
					await expect ( b'MAIL FROM:<zaphod@milliways.local>\r\n', b'250 Ok\r\n' )
					await expect ( b'RCPT TO:<arthur@earth.local>\r\n', b'250 Ok\r\n' )
					await expect ( b'DATA\r\n', b'354 Start mail input; end with <CRLF>.<CRLF>\r\n' )
					await stream.send_all ( b'Subject: trio\r\nTo: arthur@earth.local\r\n\r\n' )
					await stream.send_all ( b'so long\r\n.\r\n' )
					got = await stream.receive_some()
					test.assertTrue ( got.startswith ( b'250 Ok: queued as ' ), repr ( got ) )
					queue_id = int ( got.split()[-1] )
					await expect ( b'XYZZY\r\n', b'500 Idk that command\r\n' )
					await expect ( b'QUIT\r\n', b'221 Bye\r\n' )
					test.assertEqual ( await stream.receive_some(), b'' )
					await stream.aclose()

					result = await server.receive_result()
					test.assertIs ( result.outcome, Outcome.QUIT )
					test.assertEqual ( result.hello, 'zaphod' )
					test.assertEqual ( result.username_password, 'zaphodbeeblebrox' )
					test.assertEqual ( result.queue_ids, [ queue_id ] )
					test.assertEqual ( result.peer[0], '127.0.0.1' )

					test.assertEqual ( hellos, [ 'zaphod' ] )
					test.assertEqual ( server.auth_method_used, 'LOGIN' )
					test.assertEqual ( server.mail_from, '<zaphod@milliways.local>' )
					test.assertEqual ( server.rcpt_to, '<arthur@earth.local>' )
					assert server.message is not None
					test.assertEqual ( server.message.subject, 'trio' )
					test.assertEqual ( server.message.to, 'arthur@earth.local' )
					test.assertEqual ( server.message.from_, 'NOT-PRESENT' )
					test.assertEqual ( server.message.body, 'so long' )
					test.assertEqual ( server.connection_count, 1 )
					# ehlo, auth login, password, mail, rcpt, data, payload, xyzzy, quit
					test.assertEqual ( server.messages_received, 9 )
					server.close()
			test.assertTrue ( server.closed )
		trio.run ( _test )

	def test_close_mid_session ( self ) -> None:
		test = self

		async def _test() -> None:
			with trio.fail_after ( TIMEOUT ):
				async with trio.open_nursery() as nursery:
					server = smtp_trio.MockSmtpServer()
					await nursery.start ( server.serve )
					stream = await server.open_stream()
					test.assertEqual ( await stream.receive_some(), b'220 localhost\r\n' )
					await stream.send_all ( b'EHLO client\r\n' )
					await stream.receive_some()
					server.close()
					server.close() # already closed
				result = await server.receive_result()
				test.assertIs ( result.outcome, Outcome.TRANSPORT_FAILURE )
				try:
					test.assertEqual ( await stream.receive_some(), b'' )
				except trio.BrokenResourceError:
					pass
				await stream.aclose()
		trio.run ( _test )

	def test_multiple_connections ( self ) -> None:
		test = self

		async def _test() -> None:
			with trio.fail_after ( TIMEOUT ):
				async with trio.open_nursery() as nursery:
					server = smtp_trio.MockSmtpServer ( receive_multiple_connections = True )
					await nursery.start ( server.serve )
					for n in range ( 2 ):
						stream = await server.open_stream()
						await stream.send_all ( f'HELO client{n}\r\nQUIT\r\n'.encode() )
						result = await server.receive_result()
						test.assertIs ( result.outcome, Outcome.QUIT )
						test.assertEqual ( result.hello, f'client{n}' )
						await stream.aclose()
					test.assertEqual ( server.connection_count, 2 )
					server.close()
		trio.run ( _test )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
