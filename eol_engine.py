"""
Streaming line ending conversion.

Every line break spelling (LF, CRLF or a lone CR) is rewritten to exactly one
instance of the target sequence. All other bytes pass through untouched, so
the input is never decoded as text.
"""

import enum
from typing import BinaryIO

from eol_errors import ConfigurationError

CR = b"\r"
LF = b"\n"
CRLF = b"\r\n"

DEFAULT_CHUNK_SIZE = 64 * 1024


class Eol(enum.Enum):
    """End-of-line sequence to convert to."""

    LF = b"\n"
    CRLF = b"\r\n"
    CR = b"\r"

    @property
    def sequence(self) -> bytes:
        return self.value

    @classmethod
    def parse(cls, name: str) -> "Eol":
        """Parse an EOL name, ignoring case."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ConfigurationError(
                f"Unknown end-of-line sequence '{name}' (expected LF, CRLF or CR)"
            ) from None

    def __str__(self) -> str:
        return self.name


class _State(enum.Enum):
    NORMAL = 0
    SAW_CR = 1


class EolConverter:
    """
    Incremental converter for one byte stream.

    A CR at the end of a chunk cannot be classified until the next byte is
    seen, so it is held back (state SAW_CR) and prepended to the next chunk.
    That one byte is the only data carried between chunks.
    """

    def __init__(self, eol: Eol) -> None:
        self.eol = eol
        self.changed = False
        self._state = _State.NORMAL

    def feed(self, chunk: bytes) -> bytes:
        """Convert the next chunk of the stream."""
        if not chunk:
            return b""
        data: bytes = CR + chunk if self._state is _State.SAW_CR else chunk
        if data.endswith(CR):
            data = data[:-1]
            self._state = _State.SAW_CR
        else:
            self._state = _State.NORMAL

        # Collapse all three spellings to LF, then spell LF as the target
        converted: bytes = data.replace(CRLF, LF).replace(CR, LF)
        if self.eol is not Eol.LF:
            converted = converted.replace(LF, self.eol.sequence)

        if converted != data:
            self.changed = True
        return converted

    def finish(self) -> bytes:
        """End the stream, emitting the line break for a held-back CR."""
        if self._state is _State.NORMAL:
            return b""
        self._state = _State.NORMAL
        if self.eol is not Eol.CR:
            self.changed = True
        return self.eol.sequence


def convert_stream(
    source: BinaryIO,
    sink: BinaryIO,
    eol: Eol,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> bool:
    """
    Copy source to sink converting line endings.
    Returns True if the output differs from the input.
    """
    converter = EolConverter(eol)
    while True:
        chunk: bytes = source.read(chunk_size)
        if not chunk:
            break
        sink.write(converter.feed(chunk))
    tail: bytes = converter.finish()
    if tail:
        sink.write(tail)
    return converter.changed


def convert_bytes(data: bytes, eol: Eol) -> bytes:
    converter = EolConverter(eol)
    return converter.feed(data) + converter.finish()


class EscapingWriter:
    """
    Binary writer that renders CR and LF as the literal two-byte escapes
    \\r and \\n, for inspecting converted output on a terminal.
    """

    def __init__(self, sink: BinaryIO) -> None:
        self._sink = sink

    def write(self, data: bytes) -> int:
        self._sink.write(data.replace(b"\r", b"\\r").replace(b"\n", b"\\n"))
        return len(data)

    def flush(self) -> None:
        self._sink.flush()
