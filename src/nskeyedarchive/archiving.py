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


import logging
import os
import plistlib
import typing
import xml.parsers.expat

from .errors import (
	CyclicReference,
	InvalidArchiveError,
	InvalidPropertyListError,
	MalformedClassDescriptor,
	MalformedCollection,
	MissingTopLevelKey,
	UnsupportedKeyType,
)
from .pool import NULL_MARKER, NULL_REFERENCE, ObjectPool
from .values import PRIMITIVE_TYPES, NormalizedValue


__all__ = [
	"COLLECTION_CLASS_NAMES",
	"KeyedUnarchiver",
	"unarchive_from_stream",
	"unarchive_from_data",
	"unarchive_from_file",
]


logger = logging.getLogger(__name__)

_KEY_CLASS = "$class"
_KEY_CLASSES = "$classes"
_KEY_NS_KEYS = "NS.keys"
_KEY_NS_OBJECTS = "NS.objects"

# Placeholder for "not resolved yet".
# Cannot use None for this,
# because None is a valid resolved value.
_UNRESOLVED = object()

# A resolution frame is a generator that yields the reference numbers of the objects it depends on,
# is sent back the resolved value of each one,
# and finally returns its own resolved value.
_Frame = typing.Generator[int, NormalizedValue, NormalizedValue]


class _Resolver(object):
	"""The state of a single decode operation.
	
	A new resolver is created for every call to :meth:`KeyedUnarchiver.decode` or :meth:`KeyedUnarchiver.resolve`
	and thrown away afterwards,
	so that concurrent decode operations never share any mutable state.
	"""
	
	pool: ObjectPool
	retain_nulls: bool
	raw_classes: bool
	_resolved: typing.Dict[int, NormalizedValue]
	_active: typing.Set[int]
	_class_names: typing.Dict[int, typing.Sequence[str]]
	
	def __init__(self, pool: ObjectPool, *, retain_nulls: bool, raw_classes: bool) -> None:
		super().__init__()
		
		self.pool = pool
		self.retain_nulls = retain_nulls
		self.raw_classes = raw_classes
		self._resolved = {}
		self._active = set()
		self._class_names = {}
	
	def resolve(self, ref: int) -> NormalizedValue:
		"""Resolve the object with the given reference number into a plain value.
		
		Objects are resolved using an explicit stack of frames instead of recursive calls,
		so the nesting depth of the archived object graph is not limited by Python's recursion limit.
		"""
		
		value = self._lookup_resolved(ref, ())
		if value is not _UNRESOLVED:
			return value
		
		stack: typing.List[typing.Tuple[int, _Frame]] = [(ref, self._begin(ref))]
		sent: NormalizedValue = None
		while stack:
			current_ref, frame = stack[-1]
			try:
				dependency = frame.send(sent)
			except StopIteration as stop:
				stack.pop()
				self._active.remove(current_ref)
				self._resolved[current_ref] = sent = stop.value
				continue
			
			value = self._lookup_resolved(dependency, stack)
			if value is _UNRESOLVED:
				stack.append((dependency, self._begin(dependency)))
				sent = None
			else:
				sent = value
		
		return sent
	
	@property
	def resolved_count(self) -> int:
		return len(self._resolved)
	
	def _lookup_resolved(self, ref: int, stack: typing.Sequence[typing.Tuple[int, _Frame]]) -> typing.Any:
		if ref == NULL_REFERENCE:
			return None
		elif ref in self._active:
			raise CyclicReference(ref, [frame_ref for frame_ref, _ in stack])
		else:
			return self._resolved.get(ref, _UNRESOLVED)
	
	def _begin(self, ref: int) -> _Frame:
		record = self.pool.lookup(ref)
		self._active.add(ref)
		return self._decode_record(ref, record)
	
	def _keep(self, value: NormalizedValue) -> bool:
		"""Check whether a value should be stored in a list or dictionary, according to the null handling mode."""
		
		return value is not None or self.retain_nulls
	
	def _lookup_class_names(self, ref: int, class_uid: typing.Any) -> typing.Sequence[str]:
		"""Look up the class names (most derived class first) from the class description that ``class_uid`` points to."""
		
		if not isinstance(class_uid, plistlib.UID):
			raise MalformedClassDescriptor(f"Object {ref}: {_KEY_CLASS} must be an object reference, not {type(class_uid).__name__}", ref)
		
		class_ref = class_uid.data
		try:
			return self._class_names[class_ref]
		except KeyError:
			pass
		
		descriptor = self.pool.lookup(class_ref)
		if not isinstance(descriptor, dict):
			raise MalformedClassDescriptor(f"Object {ref}: class description {class_ref} must be a dictionary, not {type(descriptor).__name__}", ref, class_ref)
		
		names = descriptor.get(_KEY_CLASSES)
		if not isinstance(names, list) or not names or not all(isinstance(name, str) for name in names):
			raise MalformedClassDescriptor(f"Object {ref}: class description {class_ref} must contain a non-empty {_KEY_CLASSES} list of class names", ref, class_ref)
		
		class_names = tuple(names)
		self._class_names[class_ref] = class_names
		return class_names
	
	def _get_references(self, ref: int, class_name: str, record: typing.Mapping[str, typing.Any], key: str) -> typing.Sequence[int]:
		value = record.get(key)
		if value is None:
			raise MalformedCollection(f"missing {key} field", ref, class_name)
		elif not isinstance(value, list):
			raise MalformedCollection(f"{key} must be an array, not {type(value).__name__}", ref, class_name)
		
		refs = []
		for element in value:
			if not isinstance(element, plistlib.UID):
				raise MalformedCollection(f"{key} must only contain object references, not {type(element).__name__}", ref, class_name)
			refs.append(element.data)
		return refs
	
	def _decode_record(self, ref: int, record: typing.Any) -> _Frame:
		if isinstance(record, str) and record == NULL_MARKER:
			return None
		elif isinstance(record, PRIMITIVE_TYPES):
			return record
		elif isinstance(record, dict) and _KEY_CLASS in record:
			class_names = self._lookup_class_names(ref, record[_KEY_CLASS])
			decoder = None if self.raw_classes else _COLLECTION_DECODERS.get(class_names[0])
			if decoder is None:
				return (yield from self._decode_custom_object(ref, record, class_names))
			else:
				logger.debug("Decoding object %d as collection class %s", ref, class_names[0])
				return (yield from decoder(self, ref, class_names[0], record))
		else:
			# Plain arrays and dictionaries aren't written by NSKeyedArchiver itself as objects,
			# but they are valid in a property list, so decode them the same way as inline values.
			return (yield from self._decode_inline(ref, record))
	
	def _decode_inline(self, ref: int, value: typing.Any) -> _Frame:
		"""Decode a value stored directly inside an object's record (and not as a separate object)."""
		
		if isinstance(value, plistlib.UID):
			return (yield value.data)
		elif isinstance(value, PRIMITIVE_TYPES):
			return value
		elif isinstance(value, list):
			elements = []
			for element in value:
				decoded = yield from self._decode_inline(ref, element)
				if self._keep(decoded):
					elements.append(decoded)
			return elements
		elif isinstance(value, dict):
			fields = {}
			for key, field_value in value.items():
				decoded = yield from self._decode_inline(ref, field_value)
				if self._keep(decoded):
					fields[key] = decoded
			return fields
		else:
			raise InvalidArchiveError(f"Object {ref}: unsupported value type {type(value).__name__}")
	
	def _decode_custom_object(self, ref: int, record: typing.Mapping[str, typing.Any], class_names: typing.Sequence[str]) -> _Frame:
		fields: typing.Dict[str, NormalizedValue] = {}
		for key, value in record.items():
			if key == _KEY_CLASS:
				continue
			
			decoded = yield from self._decode_inline(ref, value)
			if self._keep(decoded):
				fields[key] = decoded
		
		if self.raw_classes:
			fields[_KEY_CLASSES] = list(class_names)
		
		return fields
	
	def _decode_array(self, ref: int, class_name: str, record: typing.Mapping[str, typing.Any]) -> _Frame:
		elements = []
		for element_ref in self._get_references(ref, class_name, record, _KEY_NS_OBJECTS):
			element = yield element_ref
			if self._keep(element):
				elements.append(element)
		return elements
	
	def _decode_dictionary(self, ref: int, class_name: str, record: typing.Mapping[str, typing.Any]) -> _Frame:
		key_refs = self._get_references(ref, class_name, record, _KEY_NS_KEYS)
		value_refs = self._get_references(ref, class_name, record, _KEY_NS_OBJECTS)
		if len(key_refs) != len(value_refs):
			raise MalformedCollection(f"{_KEY_NS_KEYS} has {len(key_refs)} elements, but {_KEY_NS_OBJECTS} has {len(value_refs)}", ref, class_name)
		
		entries: typing.Dict[str, NormalizedValue] = {}
		for key_ref, value_ref in zip(key_refs, value_refs):
			key = yield key_ref
			if not isinstance(key, str):
				raise UnsupportedKeyType(ref, key)
			
			value = yield value_ref
			if self._keep(value):
				# Later duplicates of a key overwrite the earlier value.
				entries[key] = value
		return entries


_CollectionDecoder = typing.Callable[[_Resolver, int, str, typing.Mapping[str, typing.Any]], _Frame]

# Classes whose objects are decoded into plain lists and dictionaries instead of their raw fields.
# Only the most derived class name of an object is looked up here.
_COLLECTION_DECODERS: typing.Mapping[str, _CollectionDecoder] = {
	"NSArray": _Resolver._decode_array,
	"NSMutableArray": _Resolver._decode_array,
	"NSSet": _Resolver._decode_array,
	"NSMutableSet": _Resolver._decode_array,
	"NSOrderedSet": _Resolver._decode_array,
	"NSMutableOrderedSet": _Resolver._decode_array,
	"NSDictionary": _Resolver._decode_dictionary,
	"NSMutableDictionary": _Resolver._decode_dictionary,
}

COLLECTION_CLASS_NAMES: typing.AbstractSet[str] = frozenset(_COLLECTION_DECODERS)


def _load_property_list(data: bytes) -> typing.Any:
	try:
		return plistlib.loads(data)
	except (ValueError, xml.parsers.expat.ExpatError) as exc:
		# plistlib.InvalidFileException is a subclass of ValueError.
		raise InvalidPropertyListError(f"Could not parse property list: {exc}") from exc


class KeyedUnarchiver(object):
	"""Decodes an ``NSKeyedArchiver`` archive into a tree of plain values (see :mod:`nskeyedarchive.values`).
	
	Known collection classes (arrays, sets and dictionaries) are decoded to plain lists and dictionaries.
	Objects of all other classes are decoded to a dictionary of their archived fields.
	Archived nil values are omitted from lists and dictionaries.
	
	An unarchiver doesn't hold any decoding state,
	so :meth:`decode` can be called any number of times (also from multiple threads at once).
	"""
	
	pool: ObjectPool
	retain_nulls: bool
	raw_classes: bool
	
	@classmethod
	def from_data(cls, data: bytes, **kwargs: typing.Any) -> "KeyedUnarchiver":
		"""Create an unarchiver for the given archive data (a binary or XML property list).
		
		:raises InvalidPropertyListError: If the data isn't a valid property list.
		"""
		
		return cls(_load_property_list(data), **kwargs)
	
	@classmethod
	def from_stream(cls, f: typing.BinaryIO, **kwargs: typing.Any) -> "KeyedUnarchiver":
		"""Create an unarchiver for the archive data read from the given byte stream.
		
		The stream is read until EOF,
		so it doesn't have to be seekable.
		It's not closed by this method.
		"""
		
		return cls.from_data(f.read(), **kwargs)
	
	@classmethod
	def open(cls, filename: typing.Union[str, bytes, os.PathLike], **kwargs: typing.Any) -> "KeyedUnarchiver":
		"""Create an unarchiver for the archive file at the given path."""
		
		with open(filename, "rb") as f:
			return cls.from_stream(f, **kwargs)
	
	def __init__(self, root: typing.Any, *, retain_nulls: bool = False, raw_classes: bool = False) -> None:
		"""Create a :class:`KeyedUnarchiver` for an already parsed property list.
		
		:param root: The root of the property list, as returned by :func:`plistlib.load`.
		:param retain_nulls: If true, archived nil values are kept in lists and dictionaries as ``None``
			instead of being omitted.
		:param raw_classes: If true, objects of known collection classes are *not* decoded to plain lists and dictionaries,
			and every decoded object has a ``$classes`` entry with the names of its class and superclasses.
		:raises MalformedEnvelope: If ``root`` doesn't have the structure of an ``NSKeyedArchiver`` archive.
		:raises MissingTopLevelKey: If the archive has no root entries.
		"""
		
		super().__init__()
		
		self.pool = ObjectPool.from_envelope(root)
		self.retain_nulls = retain_nulls
		self.raw_classes = raw_classes
	
	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}(pool={self.pool!r}, retain_nulls={self.retain_nulls!r}, raw_classes={self.raw_classes!r})"
	
	def _make_resolver(self) -> _Resolver:
		return _Resolver(self.pool, retain_nulls=self.retain_nulls, raw_classes=self.raw_classes)
	
	def resolve(self, ref: int) -> NormalizedValue:
		"""Decode the single object with the given reference number (and everything it references).
		
		:return: The decoded value, or ``None`` for the null reference.
		"""
		
		return self._make_resolver().resolve(ref)
	
	def decode(self) -> typing.Dict[str, NormalizedValue]:
		"""Decode all root entries of the archive.
		
		:return: A dictionary with the same keys as the archive's ``$top`` dictionary (in the same order)
			and each root entry's decoded value.
		:raises MissingTopLevelKey: If a root entry decodes to nil (unless nulls are retained).
		:raises InvalidArchiveError: If the archive's object graph is invalid in any other way.
		"""
		
		resolver = self._make_resolver()
		decoded: typing.Dict[str, NormalizedValue] = {}
		for name, ref in self.pool.top.items():
			value = resolver.resolve(ref)
			if value is None and not self.retain_nulls:
				raise MissingTopLevelKey(f"Root entry {name!r} (object {ref}) decodes to nil", name)
			decoded[name] = value
		
		logger.debug("Decoded %d root entries from %d of %d objects", len(decoded), resolver.resolved_count, len(self.pool))
		return decoded


def unarchive_from_stream(f: typing.BinaryIO, **kwargs: typing.Any) -> typing.Dict[str, NormalizedValue]:
	"""Decode all root entries of the archive read from the given byte stream.
	
	Keyword arguments are passed on to :class:`KeyedUnarchiver`.
	"""
	
	return KeyedUnarchiver.from_stream(f, **kwargs).decode()


def unarchive_from_data(data: bytes, **kwargs: typing.Any) -> typing.Dict[str, NormalizedValue]:
	"""Decode all root entries of the given archive data.
	
	Keyword arguments are passed on to :class:`KeyedUnarchiver`.
	"""
	
	return KeyedUnarchiver.from_data(data, **kwargs).decode()


def unarchive_from_file(path: typing.Union[str, bytes, os.PathLike], **kwargs: typing.Any) -> typing.Dict[str, NormalizedValue]:
	"""Decode all root entries of the archive file at the given path.
	
	Keyword arguments are passed on to :class:`KeyedUnarchiver`.
	"""
	
	return KeyedUnarchiver.open(path, **kwargs).decode()
