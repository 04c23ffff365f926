from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from .errors import IndexQueryMalformed

ROOT_KEY = "/"
# Chunk indexes are stored as signed 64-bit integers.
MAX_INDEX = 2**63 - 1

_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class IndexRange:
    """Inclusive range of chunk indexes addressed by one request."""

    start: int
    end: int

    @property
    def is_single(self) -> bool:
        return self.start == self.end

    def __iter__(self):
        return iter(range(self.start, self.end + 1))

    def __len__(self) -> int:
        return self.end - self.start + 1


def extract_key(path: str) -> str:
    """Return the object key named by the first path segment.

    ``/photos/3`` addresses ``photos``; a blank first segment (``/``,
    ``//3``) addresses the root key ``"/"``.
    """
    segments = path.split("/")[1:]
    key = segments[0] if segments else ""
    if key.strip() == "":
        return ROOT_KEY
    return key


def shard_id_for(key: str) -> str:
    """Stable actor identity for an object key."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _last_segment(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def _parse_index(value: str) -> int:
    digits = value.strip()
    if not _DIGITS.fullmatch(digits):
        raise IndexQueryMalformed(f"not an index: {value!r}")
    index = int(digits)
    if index > MAX_INDEX:
        raise IndexQueryMalformed(f"index out of range: {value!r}")
    return index


def parse_index(path: str) -> int:
    """Parse the single chunk index from the last path segment.

    An empty segment defaults to index 0.
    """
    segment = _last_segment(path)
    if segment.strip() == "":
        return 0
    return _parse_index(segment)


def parse_index_range(path: str) -> IndexRange:
    """Parse ``n`` or ``a,b`` from the last path segment.

    Raises:
        IndexQueryMalformed: if either bound is not a non-negative integer,
            more than two bounds are given, or ``a > b``.
    """
    segment = _last_segment(path)
    if segment.strip() == "":
        return IndexRange(0, 0)
    parts = segment.split(",")
    if len(parts) == 1:
        index = _parse_index(parts[0])
        return IndexRange(index, index)
    if len(parts) != 2:
        raise IndexQueryMalformed(f"expected one start,end pair: {segment!r}")
    start, end = (_parse_index(part) for part in parts)
    if start > end:
        raise IndexQueryMalformed(f"range start after end: {segment!r}")
    return IndexRange(start, end)
