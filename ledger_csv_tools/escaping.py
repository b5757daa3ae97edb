#!/usr/bin/env python3
"""Byte stream transform for ledger's backslash-escaped CSV dialect.

Ledger's ``quoted()`` format function escapes characters inside a quoted
field with a backslash (``\\"`` and ``\\\\``), while the ``csv`` module only
understands doubled quotes. ``BackslashEscapeReader`` rewrites the former
into the latter so a plain ``csv.reader`` can consume ledger output.
"""

from __future__ import annotations

import io
import logging
from enum import Enum
from typing import BinaryIO, Final

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: Final = 4096

QUOTE: Final = ord('"')
BACKSLASH: Final = ord("\\")


class _State(Enum):
    """Position of the transform relative to quoted fields."""

    UNQUOTED = "unquoted"  # Outside of a quoted field
    QUOTED = "quoted"  # Inside a quoted field
    ESCAPE = "escape"  # Inside a quoted field, previous byte was a backslash


class BackslashEscapeReader(io.RawIOBase):
    """Raw reader that converts backslash escapes to doubled-quote escapes.

    Reads one chunk from ``source`` only when the previous chunk has been
    fully consumed. The quoting state survives across calls, so escapes that
    straddle a chunk boundary or a short caller buffer are handled.

    Args:
        source: Binary stream with a ``read(size)`` method
        chunk_size: Number of bytes requested from ``source`` per read
    """

    def __init__(self, source: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        super().__init__()
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._source = source
        self._chunk_size = chunk_size
        self._chunk = b""
        self._pos = 0
        # Output of an escape that did not fit the caller's buffer
        self._escaped = b""
        self._state = _State.UNQUOTED

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        """Fill ``buffer`` with converted bytes.

        Returns:
            Number of bytes written, 0 only at end of input
        """
        size = len(buffer)
        if size == 0:
            return 0

        if self._escaped:
            n = min(size, len(self._escaped))
            buffer[:n] = self._escaped[:n]
            self._escaped = self._escaped[n:]
            return n

        written = 0
        while written == 0:
            if self._pos >= len(self._chunk):
                self._chunk = self._source.read(self._chunk_size)
                self._pos = 0
                if not self._chunk:
                    if self._state is _State.ESCAPE:
                        logger.debug("Input ended after a dangling backslash")
                    return 0
            written = self._convert(buffer, size)
        return written

    def _convert(self, buffer, size: int) -> int:
        """Convert bytes from the current chunk until it or ``buffer`` runs out."""
        i = 0
        chunk = self._chunk
        while i < size and self._pos < len(chunk):
            byte = chunk[self._pos]
            self._pos += 1

            if self._state is _State.UNQUOTED:
                buffer[i] = byte
                i += 1
                if byte == QUOTE:
                    self._state = _State.QUOTED
            elif self._state is _State.QUOTED:
                if byte == BACKSLASH:
                    self._state = _State.ESCAPE
                    continue
                buffer[i] = byte
                i += 1
                if byte == QUOTE:
                    self._state = _State.UNQUOTED
            else:
                self._state = _State.QUOTED
                out = b'""' if byte == QUOTE else bytes((byte,))
                n = min(size - i, len(out))
                buffer[i:i + n] = out[:n]
                i += n
                self._escaped = out[n:]
                if self._escaped:
                    break
        return i


def open_unescaped_text(
    source: BinaryIO,
    encoding: str = "utf-8",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> io.TextIOWrapper:
    """Wrap a binary ledger export as text ready for ``csv.reader``.

    Args:
        source: Binary stream of ledger CSV output
        encoding: Text encoding of the export
        chunk_size: Bytes read from ``source`` at a time

    Returns:
        Text stream opened with ``newline=""`` as the csv module expects
    """
    raw = BackslashEscapeReader(source, chunk_size)
    return io.TextIOWrapper(io.BufferedReader(raw), encoding=encoding, newline="")
