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


"""The plain value tree produced by decoding a keyed archive.

Decoded values are represented using native Python types only,
so that they can be passed directly to :mod:`plistlib`, :mod:`json` and other serializers:

* ``None`` (archived nil, only present if nulls are retained)
* :class:`bool`
* :class:`int`
* :class:`float`
* :class:`str`
* :class:`datetime.datetime` (always naive and in UTC, like :mod:`plistlib` returns them)
* :class:`bytes`
* :class:`list` of values
* :class:`dict` of :class:`str` keys to values (in archive order)
"""


import datetime
import typing


__all__ = [
	"NormalizedValue",
	"Path",
	"PRIMITIVE_TYPES",
	"is_normalized_value",
	"walk",
	"format_path",
	"structurally_equal",
]


NormalizedValue = typing.Union[
	None,
	bool,
	int,
	float,
	str,
	datetime.datetime,
	bytes,
	typing.List[typing.Any],
	typing.Dict[str, typing.Any],
]

# A sequence of dictionary keys and list indices leading from a root value to a nested value.
Path = typing.Tuple[typing.Union[str, int], ...]

PRIMITIVE_TYPES: typing.Tuple[type, ...] = (bool, int, float, str, datetime.datetime, bytes)


def walk(value: NormalizedValue) -> typing.Iterator[typing.Tuple[Path, NormalizedValue]]:
	"""Iterate over a value and all values nested in it, depth-first and in order.
	
	The root value itself is yielded first, with an empty path.
	The tree is walked using an explicit stack,
	so arbitrarily deep values can be walked.
	"""
	
	stack: typing.List[typing.Tuple[Path, NormalizedValue]] = [((), value)]
	while stack:
		path, current = stack.pop()
		yield path, current
		
		children: typing.List[typing.Tuple[Path, NormalizedValue]]
		if isinstance(current, dict):
			children = [(path + (key,), child) for key, child in current.items()]
		elif isinstance(current, list):
			children = [(path + (index,), child) for index, child in enumerate(current)]
		else:
			continue
		
		# Reversed, so that the first child is popped first.
		stack.extend(reversed(children))


def is_normalized_value(obj: typing.Any) -> bool:
	"""Check whether ``obj`` is a valid decoded value tree, i. e. it only contains the types listed in this module's docstring."""
	
	for _, value in walk(obj):
		if value is None or isinstance(value, (list, *PRIMITIVE_TYPES)):
			continue
		elif isinstance(value, dict):
			if not all(isinstance(key, str) for key in value):
				return False
		else:
			return False
	
	return True


def format_path(path: Path) -> str:
	"""Render a path in a compact form for use in messages, e. g. ``root.items[3].name``."""
	
	rep = ""
	for part in path:
		if isinstance(part, int):
			rep += f"[{part}]"
		elif rep:
			rep += f".{part}"
		else:
			rep = part
	
	return rep or "(root)"


def structurally_equal(a: NormalizedValue, b: NormalizedValue) -> bool:
	"""Compare two value trees for exact structural equality.
	
	Unlike ``==``,
	this distinguishes booleans from integers (``True`` and ``1`` are *not* equal)
	and integers from floats,
	and treats dictionaries with the same entries in a different order as different,
	because key order is visible in the serialized output.
	"""
	
	stack = [(a, b)]
	while stack:
		left, right = stack.pop()
		
		if type(left) is not type(right):
			return False
		elif isinstance(left, dict):
			assert isinstance(right, dict)
			if list(left) != list(right):
				return False
			stack.extend((left[key], right[key]) for key in left)
		elif isinstance(left, list):
			assert isinstance(right, list)
			if len(left) != len(right):
				return False
			stack.extend(zip(left, right))
		elif left != right:
			return False
	
	return True
