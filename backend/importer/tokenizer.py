"""
Quote-aware row tokenizer shared by every release log layout.

Two states, outside quotes and inside quotes:

- the delimiter ends a field only outside quotes
- a quote toggles the state, except a doubled quote inside quotes, which is a literal quote
- carriage returns are dropped
- a line feed ends the row outside quotes and is field data inside quotes
- rows without any data (no non-whitespace text, quote or delimiter) are blank lines and are skipped
"""

from __future__ import annotations

import io
from typing import IO, Iterator, List, NamedTuple, Union

QUOTE = '"'
DEFAULT_DELIMITER = ";"
_CHUNK_SIZE = 64 * 1024


class TokenizedRow(NamedTuple):
    line_number: int
    fields: List[str]


class _CharReader:
    """Buffered character source with one character of lookahead."""

    def __init__(self, source: Union[str, IO[str]], chunk_size: int = _CHUNK_SIZE):
        self._stream = io.StringIO(source) if isinstance(source, str) else source
        self._chunk_size = chunk_size
        self._buf = ""
        self._pos = 0

    def _fill(self) -> bool:
        if self._pos < len(self._buf):
            return True
        self._buf = self._stream.read(self._chunk_size)
        self._pos = 0
        return bool(self._buf)

    def next(self) -> str:
        if not self._fill():
            return ""
        ch = self._buf[self._pos]
        self._pos += 1
        return ch

    def peek(self) -> str:
        if not self._fill():
            return ""
        return self._buf[self._pos]


def iter_rows(source: Union[str, IO[str]], delimiter: str = DEFAULT_DELIMITER) -> Iterator[TokenizedRow]:
    if len(delimiter) != 1 or delimiter in (QUOTE, "\r", "\n"):
        raise ValueError(f"invalid delimiter: {delimiter!r}")

    reader = _CharReader(source)
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    found_data = False
    line = 1
    row_line = 1

    while True:
        ch = reader.next()
        if not ch:
            break

        if ch == "\r":
            continue

        if ch == "\n":
            line += 1
            if in_quotes:
                current.append(ch)
                continue
            if found_data:
                fields.append("".join(current))
                yield TokenizedRow(row_line, fields)
            fields = []
            current = []
            found_data = False
            row_line = line
            continue

        if ch == QUOTE:
            if in_quotes and reader.peek() == QUOTE:
                current.append(QUOTE)
                reader.next()
            else:
                in_quotes = not in_quotes
            found_data = True
        elif ch == delimiter and not in_quotes:
            fields.append("".join(current))
            current = []
            found_data = True
        else:
            current.append(ch)
            if not ch.isspace():
                found_data = True

    if found_data:
        fields.append("".join(current))
        yield TokenizedRow(row_line, fields)


def pad_fields(fields: List[str], width: int) -> List[str]:
    if len(fields) >= width:
        return list(fields)
    return list(fields) + [""] * (width - len(fields))
