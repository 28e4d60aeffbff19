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
import plistlib
import typing

from .errors import DanglingReference, MalformedEnvelope, MissingTopLevelKey


__all__ = [
	"ARCHIVER_NAME",
	"ARCHIVER_VERSION",
	"NULL_REFERENCE",
	"NULL_MARKER",
	"ObjectPool",
]


logger = logging.getLogger(__name__)

# The only archiver and version supported.
# Both are written unchanged by every NSKeyedArchiver since Mac OS X 10.2.
ARCHIVER_NAME = "NSKeyedArchiver"
ARCHIVER_VERSION = 100000

# Index 0 of $objects is reserved - a reference to it stands for nil.
NULL_REFERENCE = 0
# NSKeyedArchiver stores this string at index 0 of $objects.
NULL_MARKER = "$null"

_KEY_ARCHIVER = "$archiver"
_KEY_VERSION = "$version"
_KEY_TOP = "$top"
_KEY_OBJECTS = "$objects"
# XML property lists have no UID type.
# In XML archives, NSKeyedArchiver writes each reference as a single-entry dictionary with this key instead.
_KEY_XML_UID = "CF$UID"


def _convert_xml_uids(value: typing.Any) -> typing.Any:
	"""Replace every XML-style reference dictionary (``{"CF$UID": n}``) in a raw record with a real :class:`plistlib.UID`.
	
	Values without any such dictionaries are returned unchanged.
	"""
	
	if isinstance(value, dict):
		if len(value) == 1 and _KEY_XML_UID in value:
			ref = value[_KEY_XML_UID]
			if isinstance(ref, int) and not isinstance(ref, bool) and ref >= 0:
				return plistlib.UID(ref)
		return {key: _convert_xml_uids(item) for key, item in value.items()}
	elif isinstance(value, list):
		return [_convert_xml_uids(item) for item in value]
	else:
		return value


def _get_header_key(root: typing.Mapping[str, typing.Any], key: str, expected_type: typing.Type[typing.Any], type_desc: str) -> typing.Any:
	try:
		value = root[key]
	except KeyError:
		raise MalformedEnvelope(f"Missing {key!r} key in archive root") from None
	
	# bool is a subclass of int, but a boolean $version is still wrong.
	if not isinstance(value, expected_type) or isinstance(value, bool):
		raise MalformedEnvelope(f"Expected {key!r} key to be of type {type_desc}, not {type(value).__name__}")
	
	return value


class ObjectPool(object):
	"""The flat object table of a keyed archive, together with the archive's root entries.
	
	A pool is immutable once created.
	It doesn't hold any decoding state,
	so a single pool can be shared by any number of (possibly concurrent) decode operations.
	"""
	
	archiver: str
	version: int
	top: typing.Mapping[str, int]
	_objects: typing.Sequence[typing.Any]
	
	@classmethod
	def from_envelope(cls, root: typing.Any) -> "ObjectPool":
		"""Validate the archive envelope (the root of the property list) and create a pool from it.
		
		:param root: The parsed property list root, as returned by :func:`plistlib.load`.
		:raises MalformedEnvelope: If the root isn't a dictionary,
			if any of ``$archiver``, ``$version``, ``$top`` or ``$objects`` is missing or has the wrong type,
			or if the archiver name/version isn't supported.
		:raises MissingTopLevelKey: If ``$top`` contains no root entries.
		"""
		
		if not isinstance(root, dict):
			raise MalformedEnvelope(f"Expected archive root to be a dictionary, not {type(root).__name__}")
		
		archiver = _get_header_key(root, _KEY_ARCHIVER, str, "string")
		if archiver != ARCHIVER_NAME:
			raise MalformedEnvelope(f"Unsupported archiver {archiver!r} - only {ARCHIVER_NAME!r} is supported")
		
		version = _get_header_key(root, _KEY_VERSION, int, "integer")
		if version != ARCHIVER_VERSION:
			raise MalformedEnvelope(f"Unsupported archiver version {version} - only version {ARCHIVER_VERSION} is supported")
		
		raw_top = _get_header_key(root, _KEY_TOP, dict, "dictionary")
		objects = _get_header_key(root, _KEY_OBJECTS, list, "array")
		
		if not raw_top:
			raise MissingTopLevelKey(f"The archive's {_KEY_TOP} dictionary contains no root entries")
		
		objects = [_convert_xml_uids(record) for record in objects]
		
		top: typing.Dict[str, int] = {}
		for name, ref in raw_top.items():
			ref = _convert_xml_uids(ref)
			if not isinstance(ref, plistlib.UID):
				raise MalformedEnvelope(f"Expected root entry {name!r} in {_KEY_TOP} to be an object reference, not {type(ref).__name__}")
			top[name] = ref.data
		
		logger.debug("Accepted %s archive version %d with %d objects and root entries %s", archiver, version, len(objects), list(top))
		return cls(objects, top, archiver=archiver, version=version)
	
	def __init__(
		self,
		objects: typing.Sequence[typing.Any],
		top: typing.Mapping[str, int],
		*,
		archiver: str = ARCHIVER_NAME,
		version: int = ARCHIVER_VERSION,
	) -> None:
		"""Create a pool directly from an already validated object table and root entries.
		
		Most callers should use :meth:`from_envelope` instead.
		"""
		
		super().__init__()
		
		self._objects = tuple(objects)
		self.top = dict(top)
		self.archiver = archiver
		self.version = version
	
	def __repr__(self) -> str:
		return f"<{type(self).__module__}.{type(self).__qualname__} at {id(self):#x}: {len(self._objects)} objects, root entries {list(self.top)!r}>"
	
	def __len__(self) -> int:
		return len(self._objects)
	
	def lookup(self, ref: int) -> typing.Any:
		"""Look up the raw record with the given reference number.
		
		:param ref: The reference number, i. e. an index into ``$objects``.
		:return: The raw record as stored in the property list,
			or ``None`` if ``ref`` is the reserved null reference.
		:raises DanglingReference: If ``ref`` is outside of the object table.
		"""
		
		if ref == NULL_REFERENCE:
			return None
		elif not 0 <= ref < len(self._objects):
			raise DanglingReference(ref, len(self._objects))
		else:
			return self._objects[ref]
