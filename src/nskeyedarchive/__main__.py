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


import argparse
import logging
import sys
import typing


from . import __version__
from . import archiving
from . import encoders
from . import errors


logger = logging.getLogger(__name__)

PROG = "nskeyedarchive"


def fail(file: str, stage: str, exc: BaseException) -> typing.NoReturn:
	logger.debug("Failed while %s %s", stage, file, exc_info=exc)
	print(f"{PROG}: {file}: {stage}: {exc}", file=sys.stderr)
	sys.exit(1)


def open_archive(file: str, **kwargs: typing.Any) -> archiving.KeyedUnarchiver:
	if file == "-":
		return archiving.KeyedUnarchiver.from_stream(sys.stdin.buffer, **kwargs)
	else:
		return archiving.KeyedUnarchiver.open(file, **kwargs)


def write_output(file: str, data: bytes) -> None:
	if file == "-":
		sys.stdout.buffer.write(data)
		sys.stdout.buffer.flush()
	else:
		with open(file, "wb") as f:
			f.write(data)


def do_convert(ns: argparse.Namespace) -> typing.NoReturn:
	try:
		unarchiver = open_archive(ns.input, retain_nulls=ns.retain_nulls, raw_classes=ns.raw_classes)
	except (OSError, errors.InvalidArchiveError) as exc:
		fail(ns.input, "reading input", exc)
	
	try:
		decoded = unarchiver.decode()
	except errors.InvalidArchiveError as exc:
		fail(ns.input, "decoding", exc)
	
	# The output is fully encoded before anything is written,
	# so that a failure never leaves a partial output file behind.
	# plistlib and json serialize recursively,
	# so values nested deeper than the recursion limit can be decoded but not encoded.
	try:
		data = encoders.encode(decoded, ns.output_format)
	except (TypeError, ValueError, OverflowError, RecursionError) as exc:
		fail(ns.output, "encoding output", exc)
	
	try:
		write_output(ns.output, data)
	except OSError as exc:
		fail(ns.output, "writing output", exc)
	
	logger.debug("Wrote %d bytes of %s output to %s", len(data), ns.output_format.value, ns.output)
	sys.exit(0)


def main() -> typing.NoReturn:
	"""Main function of the CLI.
	
	This function is a valid setuptools entry point.
	Arguments are passed in sys.argv,
	and every execution path ends with a sys.exit call.
	(setuptools entry points are also permitted to return an integer,
	which will be treated as an exit code.
	We do not use this feature and instead always call sys.exit ourselves.)
	"""
	
	ap = argparse.ArgumentParser(
		prog=PROG,
		formatter_class=argparse.RawDescriptionHelpFormatter,
		description="""
%(prog)s converts archives produced by the NSKeyedArchiver class in Apple's
Foundation framework into plain property lists (XML or binary) or JSON.

Arrays, sets and dictionaries are converted to plain arrays and dictionaries.
Objects of all other classes are converted to a dictionary of their archived
fields. References between objects are resolved, so objects referenced from
more than one place appear more than once in the output. Archives containing
reference cycles cannot be converted.
""",
		allow_abbrev=False,
		add_help=False,
	)
	
	ap.add_argument("--help", action="help", help="Display this help message and exit.")
	ap.add_argument("--version", action="version", version=__version__, help="Display version information and exit.")
	ap.add_argument("-v", "--verbose", action="store_true", help="Log debugging information to stderr.")
	
	format_group = ap.add_mutually_exclusive_group()
	format_group.add_argument("-p", "--plist", dest="output_format", action="store_const", const=encoders.OutputFormat.XML_PLIST, help="Output an XML property list (the default).")
	format_group.add_argument("-b", "--binary", dest="output_format", action="store_const", const=encoders.OutputFormat.BINARY_PLIST, help="Output a binary property list.")
	format_group.add_argument("-j", "--json", dest="output_format", action="store_const", const=encoders.OutputFormat.JSON, help="Output JSON.")
	ap.set_defaults(output_format=encoders.OutputFormat.XML_PLIST)
	
	ap.add_argument("-n", "--retain-nulls", action="store_true", help="Keep archived nil values in arrays and dictionaries instead of omitting them.")
	ap.add_argument("-t", "--raw-classes", action="store_true", help="Don't convert arrays, sets and dictionaries, and keep the $classes of every object.")
	
	ap.add_argument("input", help="The archive file to read (binary or XML property list), or - for stdin.")
	ap.add_argument("output", help="The file to write the converted data to, or - for stdout.")
	
	ns = ap.parse_args()
	
	logging.basicConfig(
		stream=sys.stderr,
		level=logging.DEBUG if ns.verbose else logging.WARNING,
		format="%(name)s: %(levelname)s: %(message)s",
	)
	
	do_convert(ns)


if __name__ == "__main__":
	sys.exit(main())
