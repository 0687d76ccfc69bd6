#!/usr/bin/env python3
"""
eolconv

Convert line endings (LF, CRLF or CR) in files selected by glob patterns, or
in a stream read from standard input.
"""

import argparse
import dataclasses
import logging
import os
import shutil
import sys
import tempfile
import time
import traceback
from types import TracebackType
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple, Type

from tqdm import tqdm

from eol_engine import Eol, EscapingWriter, convert_stream
from eol_errors import ConfigurationError, ConversionError, SelectionError
from eol_select import select_paths

# Define version
__version__ = "1.0.0"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("eolconv")
logger.setLevel(logging.INFO)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Send eolconv log records to stderr and, optionally, to a log file."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


@dataclasses.dataclass(frozen=True)
class Settings:  # pylint: disable=too-many-instance-attributes
    """Options for one invocation, validated on construction."""

    includes: Tuple[str, ...] = ()
    excludes: Tuple[str, ...] = ()
    eol: Eol = Eol.LF
    case_sensitive: bool = False
    dry_run: bool = False
    inspect: bool = False
    output_dir: Optional[str] = None
    stdin_target: Optional[str] = None
    progress: bool = True

    def __post_init__(self) -> None:
        if self.stdin_target is not None:
            if self.includes or self.excludes:
                raise ConfigurationError("--stdin cannot be combined with patterns")
            if self.dry_run:
                raise ConfigurationError("--stdin cannot be combined with --dry-run")
            if self.output_dir is not None:
                raise ConfigurationError("--stdin cannot be combined with --output")
            if self.stdin_target != "-" and os.path.isdir(self.stdin_target):
                raise ConfigurationError(
                    f"Output path must be a file: {self.stdin_target}"
                )

        if self.dry_run and self.inspect:
            raise ConfigurationError("--dry-run cannot be combined with --inspect")

        if self.output_dir is not None:
            if self.inspect:
                raise ConfigurationError("--inspect cannot be combined with --output")
            if os.path.exists(self.output_dir) and not os.path.isdir(self.output_dir):
                raise ConfigurationError(
                    f"Output path must be a directory: {self.output_dir}"
                )

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Settings":
        return cls(
            includes=tuple(args.include),
            excludes=tuple(args.exclude or ()),
            eol=Eol.parse(args.eol),
            case_sensitive=args.case_sensitive,
            dry_run=args.dry_run,
            inspect=args.inspect,
            output_dir=args.output,
            stdin_target=args.stdin,
            progress=not args.no_progress,
        )


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


class AtomicReplace:
    """
    Temporary file next to a destination that replaces it on commit().

    Until commit() succeeds the destination is left untouched, and the
    temporary file is removed when the block exits on any path.
    """

    def __init__(self, destination: str, mode_from: Optional[str] = None) -> None:
        self.destination = destination
        self.mode_from = mode_from
        self.sink: Optional[BinaryIO] = None
        self._temp_path: Optional[str] = None
        self._committed = False

    def __enter__(self) -> "AtomicReplace":
        directory = os.path.dirname(self.destination) or os.curdir
        fd, self._temp_path = tempfile.mkstemp(
            prefix=".eolconv-", suffix=".tmp", dir=directory
        )
        try:
            self.sink = os.fdopen(fd, "wb")
        except BaseException:
            os.close(fd)
            os.remove(self._temp_path)
            raise
        return self

    def commit(self) -> None:
        """Flush the temporary file to disk and move it over the destination."""
        if self.sink is None or self._temp_path is None:
            raise RuntimeError("commit() called outside of a with block")
        self.sink.flush()
        os.fsync(self.sink.fileno())
        self.sink.close()

        # Keep the permissions of the file being replaced
        if self.mode_from is not None and os.path.exists(self.mode_from):
            shutil.copymode(self.mode_from, self._temp_path)
        else:
            os.chmod(self._temp_path, 0o666 & ~_current_umask())

        os.replace(self._temp_path, self.destination)
        self._committed = True

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if self.sink is not None:
            self.sink.close()
        if not self._committed and self._temp_path is not None:
            if os.path.exists(self._temp_path):
                os.remove(self._temp_path)


def destination_for(path: str, output_dir: str) -> str:
    """
    Map a selected file into the output directory.

    Relative paths are mirrored below output_dir; absolute paths lose their
    drive and root. Parent references are dropped so nothing lands outside.
    """
    _, rest = os.path.splitdrive(os.path.normpath(path))
    if os.altsep:
        rest = rest.replace(os.altsep, os.sep)
    parts: List[str] = [
        part
        for part in rest.split(os.sep)
        if part not in ("", os.curdir, os.pardir)
    ]
    return os.path.join(output_dir, *parts)


def check_destinations(paths: Sequence[str], output_dir: str) -> None:
    """Refuse to run when two selected files would land on the same output path."""
    claimed: Dict[str, str] = {}
    for path in paths:
        key = os.path.normcase(destination_for(path, output_dir))
        if key in claimed:
            raise ConfigurationError(
                f"{claimed[key]} and {path} map to the same file below {output_dir}"
            )
        claimed[key] = path


def convert_file(path: str, eol: Eol, output_dir: Optional[str] = None) -> bool:
    """
    Convert one file, replacing it (or writing it below output_dir) atomically.
    Returns True if the content changed. Raises ConversionError on I/O failure.
    """
    # Rewrite the target of a symlink, not the link itself
    source: str = os.path.realpath(path)
    destination: str = source
    if output_dir is not None:
        destination = destination_for(path, output_dir)

    try:
        if output_dir is not None:
            os.makedirs(os.path.dirname(destination) or os.curdir, exist_ok=True)

        with AtomicReplace(destination, mode_from=source) as replacement:
            with open(source, "rb") as f:
                changed: bool = convert_stream(f, replacement.sink, eol)
            if changed or output_dir is not None:
                replacement.commit()
    except OSError as e:
        raise ConversionError(path, e) from e

    if changed:
        logger.debug("Updated file: %s", destination)
    else:
        logger.debug("No changes needed for file: %s", path)
    return changed


def inspect_file(path: str, eol: Eol, out: BinaryIO) -> None:
    """Write the converted content of path to out with CR and LF escaped."""
    out.write(b"==> " + os.fsencode(path) + b" <==\n")
    writer = EscapingWriter(out)
    try:
        with open(path, "rb") as f:
            convert_stream(f, writer, eol)
    except OSError as e:
        raise ConversionError(path, e) from e
    out.write(b"\n")
    out.flush()


def convert_stdin(
    eol: Eol,
    target: str = "-",
    inspect: bool = False,
    source: Optional[BinaryIO] = None,
) -> bool:
    """
    Convert standard input into target; "-" means standard output.
    A file target is replaced atomically once the whole stream has been read.
    """
    if source is None:
        source = sys.stdin.buffer

    if target == "-":
        try:
            sys.stdout.flush()
            out: BinaryIO = sys.stdout.buffer
            changed: bool = convert_stream(
                source, EscapingWriter(out) if inspect else out, eol
            )
            out.flush()
        except OSError as e:
            raise ConversionError("<stdout>", e) from e
        return changed

    if os.path.isdir(target):
        raise ConfigurationError(f"Output path must be a file: {target}")

    try:
        with AtomicReplace(target, mode_from=target) as replacement:
            sink = EscapingWriter(replacement.sink) if inspect else replacement.sink
            changed = convert_stream(source, sink, eol)
            replacement.commit()
    except OSError as e:
        raise ConversionError(target, e) from e
    return changed


def convert_files(
    paths: Sequence[str],
    eol: Eol,
    output_dir: Optional[str] = None,
    progress: bool = True,
) -> int:
    """Convert files one after another, stopping at the first failure."""
    if output_dir is not None:
        check_destinations(paths, output_dir)

    changed_count: int = 0
    with tqdm(
        total=len(paths), desc="Converting", unit="file", disable=not progress
    ) as pbar:
        for path in paths:
            logger.debug("Processing %s", path)
            if convert_file(path, eol, output_dir):
                changed_count += 1
            pbar.update(1)
    return changed_count


def run(settings: Settings) -> int:
    """Carry out one invocation and return the exit status."""
    logger.debug("Target sequence: %s", settings.eol)

    if settings.stdin_target is not None:
        logger.debug(
            "Output: %s",
            "stdout" if settings.stdin_target == "-" else settings.stdin_target,
        )
        convert_stdin(settings.eol, settings.stdin_target, settings.inspect)
        return 0

    logger.debug("Dry-run: %s", settings.dry_run)
    logger.debug("Case-sensitive: %s", settings.case_sensitive)

    paths: Tuple[str, ...] = select_paths(
        settings.includes, settings.excludes, settings.case_sensitive
    )
    if not paths:
        if settings.includes:
            logger.warning("No matching files found.")
        return 0

    if settings.dry_run:
        for path in paths:
            print(path)
        sys.stdout.flush()
        return 0

    if settings.inspect:
        sys.stdout.flush()
        for path in paths:
            inspect_file(path, settings.eol, sys.stdout.buffer)
        return 0

    start_time: float = time.time()
    changed_count: int = convert_files(
        paths, settings.eol, settings.output_dir, settings.progress
    )
    logger.info(
        "Done! Converted %d of %d files in %.2f seconds.",
        changed_count,
        len(paths),
        time.time() - start_time,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eolconv",
        description="Convert line endings of files matched by glob patterns.",
        epilog="Exclusions take precedence over inclusions.",
    )
    parser.add_argument(
        "include",
        nargs="*",
        metavar="PATTERN",
        help="Include filepaths matching a pattern",
    )
    parser.add_argument(
        "-e",
        "--exclude",
        nargs="+",
        action="extend",
        metavar="PATTERN",
        help="Exclude filepaths matching a pattern (appending)",
    )
    parser.add_argument(
        "-l",
        "--eol",
        default="LF",
        metavar="{LF,CRLF,CR}",
        help="Line ending sequence to convert to, case-insensitive (default: LF)",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="DIR",
        help="Write converted files below DIR instead of replacing the originals",
    )
    parser.add_argument(
        "-c",
        "--case-sensitive",
        action="store_true",
        help="Use case sensitive matching in patterns",
    )
    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        help="Print filepaths that would be affected, without modifying files",
    )
    parser.add_argument(
        "-x",
        "--inspect",
        action="store_true",
        help="Print converted content with CR and LF shown as \\r and \\n",
    )
    parser.add_argument(
        "--stdin",
        nargs="?",
        const="-",
        metavar="FILE",
        help="Read standard input and write to FILE, or to stdout if FILE is "
        "omitted or '-'. NOTE: a shell may force its native line endings on stdout",
    )
    parser.add_argument(
        "--no-progress", action="store_true", help="Do not show a progress bar"
    )
    parser.add_argument("--log-file", metavar="FILE", help="Also append logs to FILE")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Print debug information to stderr"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"eolconv v{__version__}",
        help="Show program version and exit",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        args = build_parser().parse_args(argv)
        setup_logging(args.verbose, args.log_file)
        logger.debug("eolconv v%s", __version__)
        return run(Settings.from_args(args))
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1
    except (ConversionError, SelectionError) as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        logger.debug("Traceback: %s", traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
