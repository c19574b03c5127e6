"""
HTTP byte-range parsing for seekable media playback.

Only the single-range form `bytes=<start>-<end?>` is supported. Suffix
ranges (`bytes=-500`) and multi-range requests are treated as malformed,
which the gateway answers with 416.
"""

import re
from dataclasses import dataclass

from ..errors import RangeError

_UNIT_PREFIX = "bytes="
_DIGITS = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class ByteRange:
    """An inclusive byte window [start, end] within an object of `size` bytes."""
    start: int
    end: int
    size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.size}"


def unsatisfiable_content_range(size: int) -> str:
    return f"bytes */{size}"


def parse_range_header(header: str, size: int) -> ByteRange:
    """
    Parse a Range header against an object of `size` bytes.

    - start must be a non-negative integer < size
    - end, if present, must be an integer >= start; it is clamped to size - 1
    - end absent means "to the end of the object"

    Raises RangeError for anything else.
    """
    value = header.strip()
    if not value.lower().startswith(_UNIT_PREFIX):
        raise RangeError(f"Unsupported range unit: {header!r}", size=size)

    range_spec = value[len(_UNIT_PREFIX):].strip()
    start_raw, sep, end_raw = range_spec.partition("-")
    start_raw = start_raw.strip()
    end_raw = end_raw.strip()

    if not sep or not _DIGITS.fullmatch(start_raw):
        raise RangeError(f"Malformed range: {header!r}", size=size)

    start = int(start_raw)
    if start >= size:
        raise RangeError(f"Range start {start} beyond object size {size}", size=size)

    if not end_raw:
        return ByteRange(start=start, end=size - 1, size=size)

    if not _DIGITS.fullmatch(end_raw):
        raise RangeError(f"Malformed range end: {header!r}", size=size)

    end = int(end_raw)
    if end < start:
        raise RangeError(f"Descending range: {header!r}", size=size)

    return ByteRange(start=start, end=min(end, size - 1), size=size)
