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


import contextlib
import io
import json
import logging
import pathlib
import plistlib
import sys
import tempfile
import typing
import unittest
import unittest.mock

import nskeyedarchive.__main__


UID = plistlib.UID

# {"root": {"name": "Alice", "tags": ["a", nil, "b"]}}
SAMPLE_ARCHIVE = {
	"$version": 100000,
	"$archiver": "NSKeyedArchiver",
	"$top": {"root": UID(1)},
	"$objects": [
		"$null",
		{"$class": UID(2), "NS.keys": [UID(3), UID(4)], "NS.objects": [UID(5), UID(6)]},
		{"$classname": "NSDictionary", "$classes": ["NSDictionary", "NSObject"]},
		"name",
		"tags",
		"Alice",
		{"$class": UID(7), "NS.objects": [UID(8), UID(0), UID(9)]},
		{"$classname": "NSArray", "$classes": ["NSArray", "NSObject"]},
		"a",
		"b",
	],
}


class CommandLineTests(unittest.TestCase):
	def setUp(self) -> None:
		temp_dir = tempfile.TemporaryDirectory()
		self.addCleanup(temp_dir.cleanup)
		self.dir = pathlib.Path(temp_dir.name)
		self.input = self.dir / "input.plist"
		self.input.write_bytes(plistlib.dumps(SAMPLE_ARCHIVE, fmt=plistlib.FMT_BINARY))
		self.output = self.dir / "output"
	
	def run_main(self, *args: str, stdin: bytes = b"") -> typing.Tuple[int, str, bytes]:
		"""Run the CLI with the given arguments and return its exit code, stderr text and stdout bytes."""
		
		stdin_wrapper = io.TextIOWrapper(io.BytesIO(stdin))
		stdout_wrapper = io.TextIOWrapper(io.BytesIO())
		stderr = io.StringIO()
		with unittest.mock.patch.object(sys, "argv", ["nskeyedarchive", *args]), unittest.mock.patch.object(sys, "stdin", stdin_wrapper):
			with contextlib.redirect_stdout(stdout_wrapper), contextlib.redirect_stderr(stderr):
				with self.assertRaises(SystemExit) as cm:
					nskeyedarchive.__main__.main()
		
		stdout_wrapper.flush()
		return cm.exception.code, stderr.getvalue(), stdout_wrapper.buffer.getvalue()
	
	def test_default_xml_plist(self) -> None:
		code, _, _ = self.run_main(str(self.input), str(self.output))
		self.assertEqual(code, 0)
		data = self.output.read_bytes()
		self.assertTrue(data.startswith(b"<?xml"))
		self.assertEqual(plistlib.loads(data), {"root": {"name": "Alice", "tags": ["a", "b"]}})
	
	def test_binary_plist(self) -> None:
		code, _, _ = self.run_main("-b", str(self.input), str(self.output))
		self.assertEqual(code, 0)
		data = self.output.read_bytes()
		self.assertTrue(data.startswith(b"bplist00"))
		self.assertEqual(plistlib.loads(data), {"root": {"name": "Alice", "tags": ["a", "b"]}})
	
	def test_json(self) -> None:
		code, _, _ = self.run_main("--json", str(self.input), str(self.output))
		self.assertEqual(code, 0)
		self.assertEqual(json.loads(self.output.read_bytes()), {"root": {"name": "Alice", "tags": ["a", "b"]}})
	
	def test_retain_nulls(self) -> None:
		code, _, _ = self.run_main("-j", "-n", str(self.input), str(self.output))
		self.assertEqual(code, 0)
		self.assertEqual(json.loads(self.output.read_bytes()), {"root": {"name": "Alice", "tags": ["a", None, "b"]}})
	
	def test_raw_classes(self) -> None:
		code, _, _ = self.run_main("-j", "-t", str(self.input), str(self.output))
		self.assertEqual(code, 0)
		root = json.loads(self.output.read_bytes())["root"]
		self.assertEqual(root["$classes"], ["NSDictionary", "NSObject"])
		self.assertEqual(root["NS.keys"], ["name", "tags"])
	
	def test_stdin_and_stdout(self) -> None:
		code, _, stdout = self.run_main("-j", "-", "-", stdin=self.input.read_bytes())
		self.assertEqual(code, 0)
		self.assertEqual(json.loads(stdout), {"root": {"name": "Alice", "tags": ["a", "b"]}})
	
	def test_conflicting_formats(self) -> None:
		code, stderr, _ = self.run_main("-j", "-b", str(self.input), str(self.output))
		self.assertEqual(code, 2)
		self.assertIn("not allowed with argument", stderr)
		self.assertFalse(self.output.exists())
	
	def test_missing_arguments(self) -> None:
		code, _, _ = self.run_main(str(self.input))
		self.assertEqual(code, 2)
	
	def test_missing_input_file(self) -> None:
		missing = self.dir / "missing.plist"
		code, stderr, _ = self.run_main(str(missing), str(self.output))
		self.assertEqual(code, 1)
		self.assertTrue(stderr.startswith(f"nskeyedarchive: {missing}: reading input: "), stderr)
		self.assertFalse(self.output.exists())
	
	def test_not_a_property_list(self) -> None:
		self.input.write_bytes(b"definitely not a property list")
		code, stderr, _ = self.run_main(str(self.input), str(self.output))
		self.assertEqual(code, 1)
		self.assertTrue(stderr.startswith(f"nskeyedarchive: {self.input}: reading input: "), stderr)
		self.assertFalse(self.output.exists())
	
	def test_decode_error(self) -> None:
		"""A dangling reference is only found while decoding, and no output file is written."""
		
		archive = dict(SAMPLE_ARCHIVE)
		archive["$objects"] = [*SAMPLE_ARCHIVE["$objects"][:8], {"$class": UID(7), "NS.objects": [UID(99)]}]
		archive["$top"] = {"root": UID(8)}
		self.input.write_bytes(plistlib.dumps(archive, fmt=plistlib.FMT_BINARY))
		
		code, stderr, _ = self.run_main(str(self.input), str(self.output))
		self.assertEqual(code, 1)
		self.assertTrue(stderr.startswith(f"nskeyedarchive: {self.input}: decoding: "), stderr)
		self.assertEqual(stderr.count("\n"), 1)
		self.assertFalse(self.output.exists())
	
	def test_unwritable_output(self) -> None:
		output = self.dir / "no such directory" / "output.plist"
		code, stderr, _ = self.run_main(str(self.input), str(output))
		self.assertEqual(code, 1)
		self.assertTrue(stderr.startswith(f"nskeyedarchive: {output}: writing output: "), stderr)
	
	def test_verbose_logging(self) -> None:
		for args, level in [((), logging.WARNING), (("-v",), logging.DEBUG), (("--verbose",), logging.DEBUG)]:
			with self.subTest(args=args):
				with unittest.mock.patch.object(logging, "basicConfig") as basic_config:
					code, _, _ = self.run_main(*args, str(self.input), str(self.output))
				self.assertEqual(code, 0)
				basic_config.assert_called_once()
				self.assertEqual(basic_config.call_args[1]["level"], level)
	
	def test_verbose_logs_decoding(self) -> None:
		with unittest.mock.patch.object(logging, "basicConfig"), self.assertLogs("nskeyedarchive", level=logging.DEBUG) as cm:
			code, _, _ = self.run_main("-v", str(self.input), str(self.output))
		self.assertEqual(code, 0)
		self.assertTrue(any("Accepted NSKeyedArchiver archive" in line for line in cm.output), cm.output)
	
	def test_encode_error(self) -> None:
		"""A string that XML property lists can't contain fails in the encoding stage, and no output file is written."""
		
		archive = {**SAMPLE_ARCHIVE, "$objects": ["$null", "nul\x00character"]}
		self.input.write_bytes(plistlib.dumps(archive, fmt=plistlib.FMT_BINARY))
		
		code, stderr, _ = self.run_main("-p", str(self.input), str(self.output))
		self.assertEqual(code, 1)
		self.assertTrue(stderr.startswith(f"nskeyedarchive: {self.output}: encoding output: "), stderr)
		self.assertEqual(stderr.count("\n"), 1)
		self.assertFalse(self.output.exists())
	
	def test_too_deep_to_encode(self) -> None:
		"""Archives nested deeper than the serializers can handle are reported as a normal encoding error."""
		
		depth = 5000
		objects: typing.List[typing.Any] = ["$null", {"$classname": "NSArray", "$classes": ["NSArray", "NSObject"]}, "bottom"]
		for _ in range(depth):
			objects.append({"$class": UID(1), "NS.objects": [UID(len(objects) - 1)]})
		archive = {**SAMPLE_ARCHIVE, "$top": {"root": UID(len(objects) - 1)}, "$objects": objects}
		self.input.write_bytes(plistlib.dumps(archive, fmt=plistlib.FMT_BINARY))
		
		for args in [("-j",), ("-p",)]:
			with self.subTest(args=args):
				code, stderr, _ = self.run_main(*args, str(self.input), str(self.output))
				self.assertEqual(code, 1)
				self.assertTrue(stderr.startswith(f"nskeyedarchive: {self.output}: encoding output: "), stderr)
				self.assertEqual(stderr.count("\n"), 1)
				self.assertFalse(self.output.exists())


if __name__ == "__main__":
	unittest.main()
