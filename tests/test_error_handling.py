#!/usr/bin/env python3
"""
Test error handling scenarios for eolconv.py.
"""

import errno
import io
import logging
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from typing import List
from unittest.mock import patch

# Add parent directory to path to import the eolconv modules
sys.path.insert(0, str(Path(__file__).parent.parent))
import eolconv  # pylint: disable=wrong-import-position
from eol_engine import Eol  # pylint: disable=wrong-import-position
from eol_errors import (  # pylint: disable=wrong-import-position
    ConfigurationError,
    ConversionError,
    EolConvError,
    PatternError,
    SelectionError,
)

# Disable logging for tests
eolconv.logger.setLevel(logging.CRITICAL)


class TestErrorHandling(unittest.TestCase):
    def setUp(self) -> None:
        # Create a temporary directory
        self.test_dir = tempfile.mkdtemp()

        # Create test files
        self.test_file = os.path.join(self.test_dir, "test.txt")
        with open(self.test_file, "wb") as f:
            f.write(b"Test content\r\n")

    def tearDown(self) -> None:
        # Clean up the temporary directory
        shutil.rmtree(self.test_dir)

    def leftovers(self) -> List[str]:
        """Temporary files left behind in the test directory."""
        return [
            name for name in os.listdir(self.test_dir) if name.startswith(".eolconv-")
        ]

    def read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def test_error_hierarchy(self) -> None:
        self.assertTrue(issubclass(PatternError, ConfigurationError))
        self.assertTrue(issubclass(ConfigurationError, EolConvError))
        self.assertTrue(issubclass(ConversionError, EolConvError))
        self.assertTrue(issubclass(SelectionError, EolConvError))
        self.assertFalse(issubclass(ConversionError, ConfigurationError))

    def test_pattern_error_message(self) -> None:
        error = PatternError("a**", 1, "recursive wildcards not allowed here")
        self.assertEqual(error.position, 1)
        self.assertIn("'a**'", str(error))
        self.assertIn("position 1", str(error))

    def test_conversion_error_message(self) -> None:
        error = ConversionError("x.txt", OSError(errno.EIO, "Input/output error"))
        self.assertEqual(error.path, "x.txt")
        self.assertIn("x.txt", str(error))
        self.assertIn("Input/output error", str(error))

    def test_convert_nonexistent_file(self) -> None:
        """Test converting a file that doesn't exist."""
        missing = os.path.join(self.test_dir, "missing.txt")
        with self.assertRaises(ConversionError) as ctx:
            eolconv.convert_file(missing, Eol.LF)
        self.assertIsInstance(ctx.exception.__cause__, FileNotFoundError)
        self.assertEqual(self.leftovers(), [])

    def test_read_error_leaves_original_untouched(self) -> None:
        """Test an I/O error mid-stream keeps the original and removes the temp file."""
        read_error = OSError(errno.EIO, "Read error")
        with patch("eolconv.convert_stream", side_effect=read_error):
            with self.assertRaises(ConversionError):
                eolconv.convert_file(self.test_file, Eol.LF)

        self.assertEqual(self.read(self.test_file), b"Test content\r\n")
        self.assertEqual(self.leftovers(), [])

    def test_replace_error_leaves_original_untouched(self) -> None:
        """Test a failed rename keeps the original and removes the temp file."""
        with patch("os.replace", side_effect=OSError(errno.EACCES, "Replace error")):
            with self.assertRaises(ConversionError):
                eolconv.convert_file(self.test_file, Eol.LF)

        self.assertEqual(self.read(self.test_file), b"Test content\r\n")
        self.assertEqual(self.leftovers(), [])

    def test_temp_file_creation_error(self) -> None:
        with patch("tempfile.mkstemp", side_effect=OSError(errno.ENOSPC, "No space")):
            with self.assertRaises(ConversionError):
                eolconv.convert_file(self.test_file, Eol.LF)
        self.assertEqual(self.read(self.test_file), b"Test content\r\n")

    def test_stdin_to_directory(self) -> None:
        """Test a directory is rejected as the stdin output path."""
        with self.assertRaises(ConfigurationError):
            eolconv.convert_stdin(Eol.LF, self.test_dir, source=io.BytesIO(b"x"))

    def test_stdin_write_error_keeps_existing_target(self) -> None:
        """Test a failed stdin conversion does not clobber the target file."""
        with patch("eolconv.convert_stream", side_effect=OSError(errno.EIO, "Broken")):
            with self.assertRaises(ConversionError):
                eolconv.convert_stdin(
                    Eol.LF, self.test_file, source=io.BytesIO(b"x\r\n")
                )
        self.assertEqual(self.read(self.test_file), b"Test content\r\n")
        self.assertEqual(self.leftovers(), [])

    def test_stdin_read_error_to_stdout(self) -> None:
        """Test a failing input stream in stdout mode is a conversion error."""

        class FailingReader(io.RawIOBase):
            def readable(self) -> bool:
                return True

            def read(self, size: int = -1) -> bytes:
                raise OSError(errno.EIO, "Input/output error")

        with patch("sys.stdout", io.TextIOWrapper(io.BytesIO())):
            with self.assertRaises(ConversionError) as ctx:
                eolconv.convert_stdin(Eol.LF, "-", source=FailingReader())
        self.assertEqual(ctx.exception.path, "<stdout>")
        self.assertEqual(ctx.exception.error.errno, errno.EIO)

    def test_unreadable_directory_fails_run(self) -> None:
        """Test a directory that cannot be listed makes the run fail."""
        test_args = ["eolconv", os.path.join(self.test_dir, "**", "*.txt")]
        failure = SelectionError(self.test_dir, PermissionError(errno.EACCES, "Denied"))
        with patch("sys.argv", test_args):
            with patch("eol_select._scan", side_effect=failure):
                with patch("eolconv.convert_files") as convert:
                    result = eolconv.main()

        self.assertEqual(result, 1)
        convert.assert_not_called()
        self.assertEqual(self.read(self.test_file), b"Test content\r\n")

    def test_output_collision_is_rejected(self) -> None:
        """Test two files mapping to one output path stop the run before writing."""
        out_dir = os.path.join(self.test_dir, "out")
        # Parent references are dropped, so both land on out/x/test.txt
        paths = [
            os.path.join("x", "test.txt"),
            os.path.join(os.pardir, "x", "test.txt"),
        ]
        with patch("eolconv.convert_file") as convert:
            with self.assertRaises(ConfigurationError):
                eolconv.convert_files(paths, Eol.LF, out_dir, progress=False)
        convert.assert_not_called()
        self.assertFalse(os.path.exists(out_dir))

    def test_run_halts_on_first_error(self) -> None:
        """Test the run stops at the first failed file and reports failure."""
        second = os.path.join(self.test_dir, "test2.txt")
        with open(second, "wb") as f:
            f.write(b"More\r\n")

        test_args = ["eolconv", os.path.join(self.test_dir, "*.txt"), "--no-progress"]
        failure = ConversionError(self.test_file, OSError(errno.EIO, "I/O error"))
        with patch("sys.argv", test_args):
            with patch("eolconv.convert_file", side_effect=failure) as convert:
                result = eolconv.main()

        self.assertEqual(result, 1)
        self.assertEqual(convert.call_count, 1)
        self.assertEqual(self.read(second), b"More\r\n")

    def test_inspect_missing_file(self) -> None:
        missing = os.path.join(self.test_dir, "missing.txt")
        with self.assertRaises(ConversionError):
            eolconv.inspect_file(missing, Eol.LF, io.BytesIO())

    def test_settings_validation(self) -> None:
        """Test conflicting settings are rejected on construction."""
        with self.assertRaises(ConfigurationError):
            eolconv.Settings(includes=("*.txt",), stdin_target="-")
        with self.assertRaises(ConfigurationError):
            eolconv.Settings(excludes=("*.txt",), stdin_target="-")
        with self.assertRaises(ConfigurationError):
            eolconv.Settings(stdin_target=self.test_dir)
        with self.assertRaises(ConfigurationError):
            eolconv.Settings(output_dir=self.test_file)

        settings = eolconv.Settings(includes=("*.txt",), output_dir=self.test_dir)
        self.assertEqual(settings.output_dir, self.test_dir)

    def test_debug_traceback_logging(self) -> None:
        """Test unexpected errors are reported with a traceback at debug level."""
        test_args = ["eolconv", "*.txt", "--verbose"]
        with patch("sys.argv", test_args):
            with patch("eolconv.run", side_effect=RuntimeError("Intentional error")):
                # Keep the handler installed by assertLogs
                with patch("eolconv.setup_logging"):
                    with self.assertLogs("eolconv", level="DEBUG") as logs:
                        result = eolconv.main()

        self.assertEqual(result, 1)
        self.assertTrue(any("Traceback" in line for line in logs.output))
        eolconv.logger.setLevel(logging.CRITICAL)


if __name__ == "__main__":
    unittest.main()
