# This file is part of the python-nskeyedarchive library.
# Copyright (C) 2026 the nskeyedarchive contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.


import typing


__all__ = [
	"InvalidArchiveError",
	"InvalidPropertyListError",
	"MalformedEnvelope",
	"MissingTopLevelKey",
	"DanglingReference",
	"CyclicReference",
	"MalformedClassDescriptor",
	"MalformedCollection",
	"UnsupportedKeyType",
]


class InvalidArchiveError(Exception):
	"""Base class for all errors raised while reading or decoding a keyed archive.
	
	Every error is fatal to the decode operation that raised it -
	no partially decoded value is ever returned.
	"""


class InvalidPropertyListError(InvalidArchiveError):
	"""Raised if the archive data could not be parsed as a property list (binary or XML) in the first place.
	
	The original exception from the property list parser is available as ``__cause__``.
	"""


class MalformedEnvelope(InvalidArchiveError):
	"""Raised if the property list root doesn't have the structure of an ``NSKeyedArchiver`` archive.
	
	This covers a root that isn't a dictionary,
	missing or mistyped ``$archiver``/``$version``/``$top``/``$objects`` keys,
	and unsupported archiver names or versions.
	"""


class MissingTopLevelKey(InvalidArchiveError):
	"""Raised if ``$top`` is empty or one of its root entries doesn't resolve to a value."""
	
	name: typing.Optional[str]
	
	def __init__(self, message: str, name: typing.Optional[str] = None) -> None:
		super().__init__(message)
		
		self.name = name


class DanglingReference(InvalidArchiveError):
	"""Raised if an object reference points outside of the ``$objects`` table."""
	
	reference: int
	object_count: int
	
	def __init__(self, reference: int, object_count: int) -> None:
		super().__init__(f"Object reference {reference} is out of range - the archive only has {object_count} objects")
		
		self.reference = reference
		self.object_count = object_count


class CyclicReference(InvalidArchiveError):
	"""Raised if an object (directly or indirectly) contains a reference to itself.
	
	The decoded value is a plain tree,
	which cannot represent a cycle,
	so this is always an error.
	"""
	
	reference: int
	chain: typing.Sequence[int]
	
	def __init__(self, reference: int, chain: typing.Sequence[int]) -> None:
		rendered_chain = " -> ".join(str(ref) for ref in [*chain, reference])
		super().__init__(f"Object {reference} contains a reference to itself (reference chain: {rendered_chain})")
		
		self.reference = reference
		self.chain = chain


class MalformedClassDescriptor(InvalidArchiveError):
	"""Raised if the ``$class`` of an object doesn't point to a valid class description (with a ``$classes`` list of names)."""
	
	reference: int
	class_reference: typing.Optional[int]
	
	def __init__(self, message: str, reference: int, class_reference: typing.Optional[int] = None) -> None:
		super().__init__(message)
		
		self.reference = reference
		self.class_reference = class_reference


class MalformedCollection(InvalidArchiveError):
	"""Raised if an object of a known collection class is missing its ``NS.keys``/``NS.objects`` fields,
	or if they have the wrong type or mismatched lengths.
	"""
	
	reference: int
	class_name: str
	
	def __init__(self, message: str, reference: int, class_name: str) -> None:
		super().__init__(f"Object {reference} of class {class_name}: {message}")
		
		self.reference = reference
		self.class_name = class_name


class UnsupportedKeyType(InvalidArchiveError):
	"""Raised if a key of an ``NSDictionary`` doesn't decode to a string.
	
	Property lists and JSON only support string keys.
	"""
	
	reference: int
	key: typing.Any
	
	def __init__(self, reference: int, key: typing.Any) -> None:
		super().__init__(f"Object {reference}: dictionary key must decode to a string, not {type(key).__name__} ({key!r})")
		
		self.reference = reference
		self.key = key
