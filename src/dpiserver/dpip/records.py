"""
=============================================================================
DPIP RECORDS
=============================================================================

Every message exchanged between the browser and a daemon is a small
tagged record:

    <cmd='start_send_page' url='file:/home/user/' '>
    └┘└───────────────────┘ └──────────────────┘ └─┘
    open   attribute            attribute         terminator

Attributes are name='value' pairs separated by single spaces. A quote
inside a value is written twice (''), which keeps the terminator (the
two characters ') unambiguous: a lone quote that is followed by '>'
can only close the record, never a value.

=============================================================================
FRAMING OVER A BYTE STREAM
=============================================================================

Like HTTP headers, records arrive over a stream socket in arbitrary
pieces:

    recv() → b"<cmd='auth' msg='4f2"
    recv() → b"a9' '><cmd='open_url' url='file:/tmp' '>"

RecordReader buffers the pieces and hands back whole records as soon as
their terminator has arrived. Anything after the last complete record
stays buffered for the next feed().

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# Characters that can never appear inside an attribute name.
_NAME_STOPS = frozenset(b" '<>=\r\n\t")

QUOTE = ord("'")
CLOSE = ord(">")
OPEN = ord("<")
SPACE = ord(" ")


class RecordError(ValueError):
    """Raised when bytes on the wire do not form a valid record."""


@dataclass
class Record:
    """
    A parsed record.

    Attributes keep their wire order, so building a record from a parsed
    one reproduces the same bytes.
    """

    attrs: Dict[str, str] = field(default_factory=dict)

    @property
    def cmd(self) -> Optional[str]:
        """The record's command name (the 'cmd' attribute)."""
        return self.attrs.get("cmd")

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get an attribute value by name."""
        return self.attrs.get(name, default)

    def to_bytes(self) -> bytes:
        """Serialize back to the wire format."""
        return build_record(**self.attrs)


def _encode_value(value: str) -> bytes:
    return os.fsencode(value).replace(b"'", b"''")


def _decode_value(raw: bytes) -> str:
    # surrogateescape keeps non-UTF-8 file names intact for os.* calls
    return os.fsdecode(raw)


def build_record(**attrs: str) -> bytes:
    """
    Build a record from keyword attributes, in the given order.

    Example:
        >>> build_record(cmd="start_send_page", url="file:/tmp/")
        b"<cmd='start_send_page' url='file:/tmp/' '>"
        >>> build_record(cmd="reload_request")
        b"<cmd='reload_request' '>"
    """
    parts = [b"<"]
    for name, value in attrs.items():
        parts.append(name.encode("ascii") + b"='" + _encode_value(value) + b"' ")
    parts.append(b"'>")
    return b"".join(parts)


def scan_record(data: bytes, start: int = 0) -> Optional[Tuple[Record, int]]:
    """
    Try to parse one record from data[start:].

    Returns:
        (record, end_offset) when a whole record is present, or None when
        more bytes are needed.

    Raises:
        RecordError: If the bytes can never become a valid record.
    """
    n = len(data)
    i = start

    # Whitespace between records is tolerated
    while i < n and data[i] in b" \r\n\t":
        i += 1
    if i >= n:
        return None
    if data[i] != OPEN:
        raise RecordError(f"Expected '<' at offset {i}, got {data[i:i + 1]!r}")
    i += 1

    attrs: Dict[str, str] = {}
    while True:
        while i < n and data[i] == SPACE:
            i += 1
        if i >= n:
            return None

        # ─────────────────────────────────────────────────────────────────
        # TERMINATOR: '>
        # ─────────────────────────────────────────────────────────────────
        if data[i] == QUOTE:
            if i + 1 >= n:
                return None
            if data[i + 1] == CLOSE:
                return Record(attrs), i + 2
            raise RecordError("Stray quote outside of an attribute value")

        # ─────────────────────────────────────────────────────────────────
        # ATTRIBUTE NAME
        # ─────────────────────────────────────────────────────────────────
        j = i
        while j < n and data[j] not in _NAME_STOPS:
            j += 1
        if j >= n:
            return None
        if data[j] != ord("=") or j == i:
            raise RecordError(f"Malformed attribute name near offset {i}")
        name = data[i:j].decode("ascii", errors="replace")

        # ─────────────────────────────────────────────────────────────────
        # QUOTED VALUE ('' stands for a literal quote)
        # ─────────────────────────────────────────────────────────────────
        j += 1
        if j >= n:
            return None
        if data[j] != QUOTE:
            raise RecordError(f"Attribute {name!r} value is not quoted")
        j += 1

        value = bytearray()
        while True:
            if j >= n:
                return None
            c = data[j]
            if c == QUOTE:
                if j + 1 >= n:
                    return None
                if data[j + 1] == QUOTE:
                    value.append(QUOTE)
                    j += 2
                    continue
                j += 1
                break
            value.append(c)
            j += 1

        attrs[name] = _decode_value(bytes(value))
        i = j


def parse_record(data: bytes | str) -> Record:
    """
    Parse exactly one complete record.

    Raises:
        RecordError: If data is not one whole record.
    """
    if isinstance(data, str):
        data = os.fsencode(data)
    result = scan_record(data)
    if result is None:
        raise RecordError("Incomplete record")
    record, end = result
    if data[end:].strip():
        raise RecordError("Trailing bytes after record")
    return record


class RecordReader:
    """
    Incremental record splitter for one connection.

    Usage:
        reader = RecordReader()
        for record in reader.feed(sock.recv(8192)):
            handle(record)
    """

    def __init__(self, max_record_size: int = 64 * 1024):
        self.max_record_size = max_record_size
        self._buffer = b""

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of a whole record."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[Record]:
        """
        Add received bytes and return every record they complete.

        Raises:
            RecordError: On malformed input, or when a single record grows
                past max_record_size.
        """
        self._buffer += data
        records = []
        offset = 0
        while True:
            result = scan_record(self._buffer, offset)
            if result is None:
                break
            record, offset = result
            records.append(record)

        self._buffer = self._buffer[offset:]
        if len(self._buffer) > self.max_record_size:
            raise RecordError(f"Record too large: {len(self._buffer)} bytes buffered")
        return records
