'''
state shared by the loopback SMTP front ends (smtp_socket, smtp_trio)

A MockServerBase owns everything the calling test observes: the observer
callbacks, the "last observed" fields (last writer wins when more than one
connection is active), the connection/frame counters and the queue-id
sequence. Each connection is driven by a session that mixes in
SessionRecorder, which turns protocol events into updates of its own
SessionResult and of the server's fields. Finished SessionResults are
published to the server so callers can drain them one connection at a time.
'''
from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import itertools
import logging
import random
import threading
from typing import Any, Callable, List, Optional as Opt

# loopback_smtp imports:
from base_proto import FrameEvent, Outcome
from mail_message import ParsedMailMessage
import smtp_proto as proto

logger = logging.getLogger ( __name__ )


class SessionResult:
	outcome: Opt[Outcome] = None
	error: Opt[BaseException] = None
	hello: Opt[str] = None
	auth_method: Opt[str] = None
	username: Opt[str] = None
	password: Opt[str] = None
	mail_from: Opt[str] = None
	rcpt_to: Opt[str] = None

	def __init__ ( self, peer: Any = None ) -> None:
		self.peer = peer
		self.messages: List[ParsedMailMessage] = []
		self.queue_ids: List[int] = []

	@property
	def message ( self ) -> Opt[ParsedMailMessage]:
		return self.messages[-1] if self.messages else None

	@property
	def username_password ( self ) -> Opt[str]:
		if self.username is None or self.password is None:
			return None
		return self.username + self.password

	def __repr__ ( self ) -> str:
		cls = type ( self )
		args = ', '.join ( f'{k}={getattr(self,k)!r}' for k in (
			'peer',
			'outcome',
			'hello',
			'auth_method',
			'username',
			'mail_from',
			'rcpt_to',
			'queue_ids',
		) )
		return f'{cls.__module__}.{cls.__name__}({args})'


class MockServerBase ( metaclass = ABCMeta ):
	# observer hooks, called synchronously in protocol order:
	on_connected: Opt[Callable[[Any],None]] = None
	on_hello_received: Opt[Callable[[str],None]] = None
	on_command_received: Opt[Callable[[str,str],None]] = None
	on_unknown_command: Opt[Callable[[str],None]] = None
	on_quit_received: Opt[Callable[[Any],None]] = None

	# last observed values, from whichever session wrote last:
	client_hello: Opt[str] = None
	auth_method_used: Opt[str] = None
	username: Opt[str] = None
	password: Opt[str] = None
	username_password: Opt[str] = None
	mail_from: Opt[str] = None
	rcpt_to: Opt[str] = None
	message: Opt[ParsedMailMessage] = None

	port: int = 0

	def __init__ ( self, *,
		receive_multiple_connections: bool = False,
		support_smtputf8: bool = False,
		hostname: str = 'localhost',
	) -> None:
		self.receive_multiple_connections = receive_multiple_connections
		self.support_smtputf8 = support_smtputf8
		self.hostname = hostname
		self._lock = threading.Lock()
		self._connection_count = 0
		self._messages_received = 0
		self._closed = False
		# first queued message gets seed+1
		self._queue_ids = itertools.count ( random.randrange ( 1000, 2000 ) + 1 )

	@property
	def connection_count ( self ) -> int:
		return self._connection_count

	@property
	def messages_received ( self ) -> int:
		'''
		protocol frames received across all connections (command lines, AUTH
		responses and DATA payloads)
		'''
		return self._messages_received

	@property
	def closed ( self ) -> bool:
		return self._closed

	def next_queue_id ( self ) -> int:
		with self._lock:
			return next ( self._queue_ids )

	def _connection_accepted ( self ) -> None:
		with self._lock:
			self._connection_count += 1

	def _frame_received ( self ) -> None:
		with self._lock:
			self._messages_received += 1

	def make_protocol ( self ) -> proto.Server:
		return proto.Server ( self.hostname, smtputf8 = self.support_smtputf8 )

	@abstractmethod
	def _publish ( self, result: SessionResult ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._publish()' )


def _notify ( callback: Opt[Callable[...,None]], *args: Any ) -> None:
	if callback is not None:
		callback ( *args )


class SessionRecorder:
	server: MockServerBase
	connection: Any
	result: SessionResult

	def on_FrameEvent ( self, event: FrameEvent ) -> None:
		self.server._frame_received()

	def on_ConnectEvent ( self, event: proto.ConnectEvent ) -> None:
		_notify ( self.server.on_connected, self.connection )

	def on_CommandEvent ( self, event: proto.CommandEvent ) -> None:
		_notify ( self.server.on_command_received, event.command, event.argument )

	def on_HelloEvent ( self, event: proto.HelloEvent ) -> None:
		self.result.hello = self.server.client_hello = event.hello
		_notify ( self.server.on_hello_received, event.hello )

	def on_AuthMethodEvent ( self, event: proto.AuthMethodEvent ) -> None:
		self.result.auth_method = self.server.auth_method_used = event.mechanism

	def on_AuthEvent ( self, event: proto.AuthEvent ) -> None:
		self.result.username = self.server.username = event.uid
		self.result.password = self.server.password = event.pwd
		self.server.username_password = self.result.username_password

	def on_MailFromEvent ( self, event: proto.MailFromEvent ) -> None:
		self.result.mail_from = self.server.mail_from = event.mail_from

	def on_RcptToEvent ( self, event: proto.RcptToEvent ) -> None:
		self.result.rcpt_to = self.server.rcpt_to = event.rcpt_to

	def on_MessageEvent ( self, event: proto.MessageEvent ) -> None:
		event.queue_id = self.server.next_queue_id()
		self.result.messages.append ( event.message )
		self.result.queue_ids.append ( event.queue_id )
		self.server.message = event.message

	def on_QuitEvent ( self, event: proto.QuitEvent ) -> None:
		_notify ( self.server.on_quit_received, self.connection )

	def on_UnknownCommandEvent ( self, event: proto.UnknownCommandEvent ) -> None:
		_notify ( self.server.on_unknown_command, event.line )

	def finish ( self, outcome: Outcome, error: Opt[BaseException] ) -> SessionResult:
		log = logger.getChild ( 'SessionRecorder.finish' )
		self.result.outcome = outcome
		self.result.error = error
		if outcome in ( Outcome.MALFORMED_INPUT, Outcome.INTERNAL_ERROR ):
			log.error ( f'session with {self.result.peer!r} aborted: {outcome.value}: {error!r}' )
		else:
			log.debug ( f'session with {self.result.peer!r} ended: {outcome.value}' )
		self.server._publish ( self.result )
		return self.result
