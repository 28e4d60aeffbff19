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


import base64
import datetime
import enum
import json
import math
import plistlib
import typing

from .pool import NULL_MARKER
from .values import NormalizedValue


__all__ = [
	"OutputFormat",
	"to_plist_compatible",
	"to_json_compatible",
	"encode",
	"write",
]


class OutputFormat(enum.Enum):
	XML_PLIST = "xml"
	BINARY_PLIST = "binary"
	JSON = "json"


def _convert(value: NormalizedValue, convert_leaf: typing.Callable[[NormalizedValue], typing.Any]) -> typing.Any:
	"""Copy a value tree, passing every non-container value through ``convert_leaf``.
	
	Copying uses an explicit stack,
	so that values of any depth can be converted.
	"""
	
	def _make(current: NormalizedValue) -> typing.Any:
		if isinstance(current, dict):
			return {}
		elif isinstance(current, list):
			return []
		else:
			return convert_leaf(current)
	
	root = _make(value)
	stack = [(value, root)]
	while stack:
		source, target = stack.pop()
		if isinstance(source, dict):
			for key, child in source.items():
				converted = _make(child)
				target[key] = converted
				stack.append((child, converted))
		elif isinstance(source, list):
			for child in source:
				converted = _make(child)
				target.append(converted)
				stack.append((child, converted))
	
	return root


def _plist_leaf(value: NormalizedValue) -> typing.Any:
	if value is None:
		# Property lists have no null value.
		return NULL_MARKER
	else:
		return value


def _json_leaf(value: NormalizedValue) -> typing.Any:
	if isinstance(value, float) and not math.isfinite(value):
		# JSON has no literals for these.
		if math.isnan(value):
			return "NaN"
		elif value > 0:
			return "Infinity"
		else:
			return "-Infinity"
	elif isinstance(value, datetime.datetime):
		# Dates read from property lists are naive and in UTC.
		if value.tzinfo is None:
			return value.isoformat() + "Z"
		else:
			return value.isoformat()
	elif isinstance(value, bytes):
		return base64.b64encode(value).decode("ascii")
	else:
		return value


def to_plist_compatible(value: NormalizedValue) -> typing.Any:
	"""Convert a decoded value so that it can be written by :mod:`plistlib`.
	
	``None`` is replaced with the string ``"$null"``
	(the same marker that ``NSKeyedArchiver`` uses for nil).
	All other values are supported natively,
	but note that XML property lists store dates only to the second,
	so microseconds are lost in XML output.
	"""
	
	return _convert(value, _plist_leaf)


def to_json_compatible(value: NormalizedValue) -> typing.Any:
	"""Convert a decoded value so that it can be written by :mod:`json`.
	
	Dates are converted to ISO 8601 strings
	and bytes are converted to base64 strings.
	NaN and infinite floats are converted to the strings ``"NaN"``, ``"Infinity"`` and ``"-Infinity"``,
	because JSON can't represent them as numbers.
	"""
	
	return _convert(value, _json_leaf)


def encode(value: NormalizedValue, output_format: OutputFormat = OutputFormat.XML_PLIST) -> bytes:
	"""Serialize a decoded value in the given format.
	
	Dictionary key order is always preserved.
	"""
	
	if output_format == OutputFormat.XML_PLIST:
		return plistlib.dumps(to_plist_compatible(value), fmt=plistlib.FMT_XML, sort_keys=False)
	elif output_format == OutputFormat.BINARY_PLIST:
		return plistlib.dumps(to_plist_compatible(value), fmt=plistlib.FMT_BINARY, sort_keys=False)
	elif output_format == OutputFormat.JSON:
		return json.dumps(to_json_compatible(value), indent="\t", ensure_ascii=False, allow_nan=False).encode("utf-8") + b"\n"
	else:
		raise ValueError(f"Unsupported output format: {output_format!r}")


def write(value: NormalizedValue, output_format: OutputFormat, f: typing.BinaryIO) -> None:
	"""Serialize a decoded value in the given format and write it to a byte stream."""
	
	f.write(encode(value, output_format))
