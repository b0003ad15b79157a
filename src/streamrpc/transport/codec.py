from __future__ import annotations

import codecs
import io
import json
import logging
import re
from collections.abc import Iterator
from typing import IO, Any

from streamrpc.errors import TransportError
from streamrpc.transport.base import MessageFramer

logger = logging.getLogger(__name__)

_NON_WHITESPACE = re.compile(r"[^ \t\n\r]")
# Characters that end a bare scalar (number, true, false, null).
_SCALAR_END = re.compile(r'[ \t\n\r{}\[\],:"]')
_STRUCTURAL = re.compile(r'["{}\[\]]')
_STRING_STOP = re.compile(r'["\\]')
# A value cannot start with these; they are handed to the parser so it fails loudly.
_STRAY = "}],:"


class _ValueScanner:
    """Finds where one JSON value ends, one chunk of text at a time.

    State (nesting depth, inside a string, pending escape) carries over between
    ``feed`` calls, so every character is looked at once however the value is split.
    """

    def __init__(self, first: str) -> None:
        self.scalar = first not in '{["'
        self.depth = 0
        self.in_string = False
        self.escaped = False

    def feed(self, text: str, pos: int, at_eof: bool = False) -> int | None:
        """Index in ``text`` just past the value, or None if it continues in later input."""
        if self.scalar:
            m = _SCALAR_END.search(text, pos)
            if m is not None:
                return m.start()
            return len(text) if at_eof else None
        n = len(text)
        while pos < n:
            if self.in_string:
                if self.escaped:
                    self.escaped = False
                    pos += 1
                    continue
                m = _STRING_STOP.search(text, pos)
                if m is None:
                    return None
                pos = m.end()
                if m.group() == "\\":
                    self.escaped = True
                    continue
                self.in_string = False
                if self.depth == 0:
                    return pos
                continue
            m = _STRUCTURAL.search(text, pos)
            if m is None:
                return None
            pos = m.end()
            c = m.group()
            if c == '"':
                self.in_string = True
            elif c in "{[":
                self.depth += 1
            else:
                self.depth -= 1
                if self.depth == 0:
                    return pos
        return None


def find_value_end(text: str, start: int, at_eof: bool = False) -> int | None:
    """Return the index just past the JSON value starting at ``text[start]``.

    Returns None if more input is needed to know where the value ends. The
    slice is not validated here; ``json.loads`` does that.
    """
    if text[start] in _STRAY:
        return start + 1
    return _ValueScanner(text[start]).feed(text, start, at_eof)


class JsonStreamCodec(MessageFramer):
    """Reads and writes consecutive JSON values on a pair of streams.

    Each written message is compact JSON followed by a newline. On the read side
    values may be separated by any JSON whitespace or by nothing at all. Bytes read
    past the end of one value stay buffered here and start the next value, so no
    message is ever cut short.

    Binary streams are read with ``read1`` when available so a read returns as soon
    as some bytes arrive; text streams are read line by line.
    """

    def __init__(
        self,
        input: IO[Any] | None,
        output: IO[Any] | None,
        encoding: str = "utf-8",
        chunk_size: int = 4096,
    ) -> None:
        self.input = input
        self.output = output
        self.encoding = encoding
        self.chunk_size = chunk_size
        self._decoder = codecs.getincrementaldecoder(encoding)()
        self._buffer = ""
        self._pos = 0
        # earlier chunks of a value that is still being read
        self._partial: list[str] = []
        self._scanner: _ValueScanner | None = None
        self._eof = False

    def encode(self, obj: Any) -> bytes:
        return self._dumps(obj).encode(self.encoding)

    @staticmethod
    def _dumps(obj: Any) -> str:
        return json.dumps(obj, ensure_ascii=False, separators=(",", ":")) + "\n"

    def write_message(self, obj: Any) -> None:
        if self.output is None:
            raise TransportError("codec has no output stream")
        try:
            if isinstance(self.output, io.TextIOBase):
                self.output.write(self._dumps(obj))
            else:
                self.output.write(self.encode(obj))
            flush = getattr(self.output, "flush", None)
            if flush is not None:
                flush()
        except (OSError, ValueError) as e:
            raise TransportError(f"failed to write message: {e}") from e

    def _read_chunk(self) -> str:
        """Read whatever is available; an empty string means end of stream."""
        assert self.input is not None
        try:
            if isinstance(self.input, io.TextIOBase):
                return self.input.readline()
            read1 = getattr(self.input, "read1", None)
            data = read1(self.chunk_size) if read1 is not None else self.input.read(self.chunk_size)
        except (OSError, ValueError) as e:
            raise TransportError(f"failed to read from input stream: {e}") from e
        if isinstance(data, str):
            return data
        try:
            return self._decoder.decode(data or b"", final=not data)
        except UnicodeDecodeError as e:
            raise TransportError(f"input is not valid {self.encoding}: {e}") from e

    def _next_chunk(self) -> None:
        """Replace the fully consumed buffer with the next chunk of input."""
        chunk = self._read_chunk()
        self._buffer, self._pos = chunk, 0
        if not chunk:
            self._eof = True

    def _finish(self, end: int) -> tuple[bool, Any]:
        piece = self._buffer[self._pos : end]
        raw = "".join(self._partial) + piece if self._partial else piece
        self._partial = []
        self._scanner = None
        self._pos = end
        try:
            return True, json.loads(raw)
        except json.JSONDecodeError as e:
            raise TransportError(f"malformed JSON message {raw[:80]!r}: {e}") from e

    def read_message(self) -> tuple[bool, Any]:
        """Decode exactly one value. Returns ``(False, None)`` at a clean end of stream."""
        if self.input is None:
            raise TransportError("codec has no input stream")
        while True:
            if self._scanner is None:
                m = _NON_WHITESPACE.search(self._buffer, self._pos)
                if m is None:
                    if self._eof:
                        self._buffer, self._pos = "", 0
                        return False, None
                    self._next_chunk()
                    continue
                self._pos = m.start()
                first = self._buffer[self._pos]
                if first in _STRAY:
                    return self._finish(self._pos + 1)
                self._scanner = _ValueScanner(first)
            end = self._scanner.feed(self._buffer, self._pos, self._eof)
            if end is not None:
                return self._finish(end)
            if self._eof:
                head = "".join(self._partial)[:80]
                raise TransportError(f"input ended inside a message: {head!r}")
            # the whole remainder belongs to this value; keep it and read on
            self._partial.append(self._buffer[self._pos :])
            self._next_chunk()

    def iter_messages(self) -> Iterator[Any]:
        while True:
            found, msg = self.read_message()
            if not found:
                logger.debug("Input stream reached end of file")
                return
            yield msg
