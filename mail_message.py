from __future__ import annotations

# python imports:
import logging
from typing import Dict, Iterable, Iterator, List, Mapping, Tuple

# loopback_smtp imports:
from base_proto import MalformedInput

logger = logging.getLogger ( __name__ )

NOT_PRESENT = 'NOT-PRESENT'


class Headers ( Mapping[str,str] ):
	'''
	read-only header mapping with case-insensitive names

	insertion order is kept; when a name is supplied more than once the last
	value wins (and keeps the position of the first)
	'''
	def __init__ ( self, items: Iterable[Tuple[str,str]] = () ) -> None:
		self._items: Dict[str,Tuple[str,str]] = {}
		for name, value in items:
			self._items[name.lower()] = ( name, value )

	def __getitem__ ( self, name: str ) -> str:
		return self._items[name.lower()][1]

	def __contains__ ( self, name: object ) -> bool:
		return isinstance ( name, str ) and name.lower() in self._items

	def __iter__ ( self ) -> Iterator[str]:
		return ( name for name, _ in self._items.values() )

	def __len__ ( self ) -> int:
		return len ( self._items )

	def __eq__ ( self, other: object ) -> bool:
		if isinstance ( other, Headers ):
			return { k: v for k, ( _, v ) in self._items.items() } == { k: v for k, ( _, v ) in other._items.items() }
		if isinstance ( other, Mapping ):
			return self == Headers ( other.items() )
		return NotImplemented

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__name__}({list(self._items.values())!r})'


class ParsedMailMessage:
	'''
	a DATA payload split into its RFC-822-style header block and body

	>>> msg = ParsedMailMessage.parse ( 'Subject: hi\\r\\n\\r\\nbody' )
	>>> msg.subject, msg.from_, msg.body
	('hi', 'NOT-PRESENT', 'body')
	'''
	__slots__ = ( '_headers', '_body' )

	def __init__ ( self, headers: Headers, body: str ) -> None:
		self._headers = headers
		self._body = body

	@property
	def headers ( self ) -> Headers:
		return self._headers

	@property
	def body ( self ) -> str:
		return self._body

	def header ( self, name: str ) -> str:
		return self._headers.get ( name, NOT_PRESENT )

	@property
	def from_ ( self ) -> str:
		return self.header ( 'From' )

	@property
	def to ( self ) -> str:
		return self.header ( 'To' )

	@property
	def subject ( self ) -> str:
		return self.header ( 'Subject' )

	@classmethod
	def parse ( cls, raw: str ) -> ParsedMailMessage: # raises: MalformedInput
		log = logger.getChild ( 'ParsedMailMessage.parse' )
		items: List[Tuple[str,str]] = []
		pos = 0
		while pos < len ( raw ):
			eol = raw.find ( '\n', pos )
			if eol < 0:
				raise MalformedInput ( f'unterminated header line {raw[pos:]!r}' )
			line = raw[pos:eol].rstrip ( '\r' )
			if not line:
				body = raw[eol+1:].rstrip ( '\r\n' )
				log.debug ( f'{len(items)} header(s), {len(body)} character body' )
				return cls ( Headers ( items ), body )
			name, colon, value = line.partition ( ':' )
			if not colon:
				raise MalformedInput ( f'expected a "name: value" header, got {line!r}' )
			items.append ( ( name.strip(), value.strip() ) )
			pos = eol + 1
		raise MalformedInput ( 'no blank line separating headers from body' )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(headers={self._headers!r}, body={self._body!r})'
