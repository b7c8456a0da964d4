#region PROLOGUE --------------------------------------------------------------
from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import logging
from typing import Callable, Dict, Iterator, Optional as Opt, Sequence as Seq, Tuple, Type

# loopback_smtp imports:
from base_proto import (
	BaseRequest, Event, NeedDataEvent, SendDataEvent, Closed, MalformedInput,
	RequestProtocolGenerator, ServerProtocol, LINE_TERMINATOR, BODY_TERMINATOR,
)
from mail_message import ParsedMailMessage
from util import BYTES, b2s, s2b, b64_encode_str, b64_decode_str

logger = logging.getLogger ( __name__ )

#endregion
#region EVENTS ----------------------------------------------------------------

def ResponseEvent ( code: int, *lines: str ) -> SendDataEvent:
	seps = [ '-' ] * len ( lines )
	seps[-1] = ' '
	chunks = ( s2b ( ''.join (
		f'{code}{sep}{line}\r\n'
		for sep, line in zip ( seps, lines )
	) ), )
	return SendDataEvent ( *chunks )


class ConnectEvent ( Event ):
	pass


class CommandEvent ( Event ):
	def __init__ ( self, command: str, argument: str ) -> None:
		self.command = command
		self.argument = argument

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(command={self.command!r}, argument={self.argument!r})'


class HelloEvent ( Event ):
	def __init__ ( self, hello: str ) -> None:
		self.hello = hello

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(hello={self.hello!r})'


class AuthMethodEvent ( Event ):
	def __init__ ( self, mechanism: str ) -> None:
		self.mechanism = mechanism

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(mechanism={self.mechanism!r})'


class AuthEvent ( Event ):
	def __init__ ( self, uid: str, pwd: str ) -> None:
		self.uid = uid
		self.pwd = pwd

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(uid={self.uid!r})'


class MailFromEvent ( Event ):
	def __init__ ( self, mail_from: str ) -> None:
		self.mail_from = mail_from

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(mail_from={self.mail_from!r})'


class RcptToEvent ( Event ):
	def __init__ ( self, rcpt_to: str ) -> None:
		self.rcpt_to = rcpt_to

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(rcpt_to={self.rcpt_to!r})'


class MessageEvent ( Event ):
	queue_id: Opt[int] = None # the handler must assign this

	def __init__ ( self, message: ParsedMailMessage ) -> None:
		self.message = message

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(message={self.message!r}, queue_id={self.queue_id!r})'


class QuitEvent ( Event ):
	pass


class UnknownCommandEvent ( Event ):
	def __init__ ( self, line: str ) -> None:
		self.line = line

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(line={self.line!r})'

#endregion
#region REQUESTS --------------------------------------------------------------

class Request ( BaseRequest ):
	def _server_protocol ( self, server: ServerProtocol, command: str, argument: str ) -> RequestProtocolGenerator:
		assert isinstance ( server, Server )
		yield from CommandEvent ( command, argument ).go()
		yield from self.server_protocol ( server, command, argument )

	@abstractmethod
	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		cls = self.__class__
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.server_protocol()' )


_request_verbs: Dict[str,Type[Request]] = {}

def request_verb ( verb: str ) -> Callable[[Type[Request]],Type[Request]]:
	def registrar ( cls: Type[Request] ) -> Type[Request]:
		global _request_verbs
		assert verb == verb.upper() and ':' not in verb, f'invalid request {verb=}'
		assert verb not in _request_verbs, f'duplicate request verb {verb!r}'
		_request_verbs[verb] = cls
		return cls
	return registrar

_auth_plugins: Dict[str,Type[AuthMechanism]] = {}

def auth_plugin ( name: str ) -> Callable[[Type[AuthMechanism]],Type[AuthMechanism]]:
	def registrar ( cls: Type[AuthMechanism] ) -> Type[AuthMechanism]:
		global _auth_plugins
		assert name == name.upper() and ' ' not in name, f'invalid auth mechanism {name=}'
		assert name not in _auth_plugins, f'duplicate auth mechanism {name!r}'
		_auth_plugins[name] = cls
		return cls
	return registrar


class GreetingRequest ( Request ):

	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		yield from ConnectEvent().go()
		yield ResponseEvent ( 220, server.hostname )
		yield from ( event := NeedDataEvent() ).go()
		line = b2s ( event.data or b'' )
		if line[:5].lower() not in ( 'helo ', 'ehlo ' ):
			raise MalformedInput ( f'expected HELO or EHLO, got {line!r}' )
		verb, hello = line[:4], line[5:]
		yield from CommandEvent ( verb, hello ).go()
		yield from HelloEvent ( hello ).go()

		lines = [ f'{server.hostname}, mock server here' ]
		if server.smtputf8:
			lines.append ( 'SMTPUTF8' )
		lines.append ( 'AUTH ' + ' '.join ( server.esmtp_auth ) )
		yield ResponseEvent ( 250, *lines )


class AuthRequest ( Request ):
	# selected for any command starting with AUTH, see Server._parse_request_line()

	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'AuthRequest.server_protocol' )
		_, *params = command.split ( ' ' )
		if not params:
			raise MalformedInput ( f'expected an auth mechanism, got {command!r}' )
		mechanism, *initial = params # ex: mechanism='LOGIN' initial=['Rm9v']
		yield from AuthMethodEvent ( mechanism ).go()
		plugincls = _auth_plugins.get ( mechanism.upper() )
		if plugincls is None:
			log.debug ( f'unsupported {mechanism=}' )
			raise ResponseEvent ( 504, 'scheme not supported' )
		plugin: AuthMechanism = plugincls.__new__ ( plugincls )
		yield from plugin.authenticate ( server, initial )


class AuthMechanism ( metaclass = ABCMeta ):
	@abstractmethod
	def authenticate ( self, server: Server, initial: Seq[str] ) -> RequestProtocolGenerator:
		cls = self.__class__
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.authenticate()' )


@auth_plugin ( 'LOGIN' )
class AuthLogin ( AuthMechanism ):

	def authenticate ( self, server: Server, initial: Seq[str] ) -> RequestProtocolGenerator:
		event = NeedDataEvent()
		if initial:
			uid = b64_decode_str ( initial[0] )
		else:
			yield ResponseEvent ( 334, b64_encode_str ( 'Username:' ) )
			yield from event.go()
			uid = b64_decode_str ( b2s ( event.data or b'' ) )
		yield ResponseEvent ( 334, b64_encode_str ( 'Password:' ) )
		yield from event.go()
		pwd = b64_decode_str ( b2s ( event.data or b'' ) )
		yield from AuthEvent ( uid, pwd ).go()
		raise ResponseEvent ( 235, 'Authentication successful' )


@auth_plugin ( 'NTLM' )
class AuthNtlm ( AuthMechanism ):
	# advertised but never completed

	def authenticate ( self, server: Server, initial: Seq[str] ) -> RequestProtocolGenerator:
		yield from ()
		raise ResponseEvent ( 500, "I lied, I can't speak NTLM - here's an invalid response" )


@request_verb ( 'MAIL FROM' )
class MailFromRequest ( Request ):

	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		yield from MailFromEvent ( argument ).go()
		raise ResponseEvent ( 250, 'Ok' )


@request_verb ( 'RCPT TO' )
class RcptToRequest ( Request ):

	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		yield from RcptToEvent ( argument ).go()
		raise ResponseEvent ( 250, 'Ok' )


@request_verb ( 'DATA' )
class DataRequest ( Request ):

	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		yield ResponseEvent ( 354, 'Start mail input; end with <CRLF>.<CRLF>' )
		event1 = NeedDataEvent()
		server.terminator = BODY_TERMINATOR
		try:
			yield from event1.go()
		finally:
			server.terminator = LINE_TERMINATOR
		# the terminator's leading CRLF ends the payload's last line
		message = ParsedMailMessage.parse ( b2s ( event1.data or b'' ) + '\r\n' )
		yield from ( event2 := MessageEvent ( message ) ).go()
		assert event2.queue_id is not None, f'{event2!r} was not assigned a queue id'
		raise ResponseEvent ( 250, f'Ok: queued as {event2.queue_id}' )


@request_verb ( 'QUIT' )
class QuitRequest ( Request ):

	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		yield from QuitEvent().go()
		yield ResponseEvent ( 221, 'Bye' )
		raise Closed ( 'QUIT' )


class UnknownRequest ( Request ):

	def server_protocol ( self, server: Server, command: str, argument: str ) -> RequestProtocolGenerator:
		yield from UnknownCommandEvent ( server.request_line ).go()
		raise ResponseEvent ( 500, 'Idk that command' )

#endregion
#region SERVER ----------------------------------------------------------------

class Server ( ServerProtocol ):
	_MAXFRAME = 1024
	smtputf8: bool = False
	esmtp_auth: Seq[str] = ( 'PLAIN', 'LOGIN', 'NTLM' ) # PLAIN is advertised but answered with 504
	request_line: str = ''

	def __init__ ( self,
		hostname: str = 'localhost',
		smtputf8: bool = False,
	) -> None:
		super().__init__ ( hostname )
		self.smtputf8 = smtputf8

	def startup ( self ) -> Iterator[Event]:
		self.request = request = GreetingRequest()
		self.request_protocol = request.server_protocol ( self, '', '' )
		yield from self._run_protocol()

	def _parse_request_line ( self, line: BYTES ) -> Tuple[str,Type[BaseRequest],str]:
		log = logger.getChild ( 'Server._parse_request_line' )
		self.request_line = text = b2s ( line )
		command, _, argument = text.partition ( ':' )
		argument = argument.strip()
		verb = command.upper()
		requestcls: Type[Request]
		if verb.startswith ( 'AUTH' ):
			requestcls = AuthRequest
		else:
			requestcls = _request_verbs.get ( verb, UnknownRequest )
		log.debug ( f'{command=} {argument=} {requestcls.__name__}' )
		return command, requestcls, argument

#endregion
