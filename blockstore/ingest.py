"""Streaming ingestion of a request body into consecutive chunks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

    from .routing import IndexRange
    from .store import ChunkStore

LOG = logging.getLogger("blockstore.ingest")

DEFAULT_QUANTUM = 128 * 1024


class BodyReader:
    """Buffered reader over an async byte stream.

    ``read_at_least(n)`` keeps pulling from the stream until ``n`` bytes are
    buffered or the stream ends, then hands back at most ``n`` bytes. Surplus
    bytes stay buffered for the next call.
    """

    def __init__(self, stream: AsyncIterable[bytes]):
        self._iterator: AsyncIterator[bytes] = stream.__aiter__()
        self._buffer = bytearray()
        self._exhausted = False
        self.bytes_read = 0

    @property
    def done(self) -> bool:
        return self._exhausted and not self._buffer

    async def read_at_least(self, size: int) -> bytes:
        """Return the next ``size`` bytes, fewer at end of stream, ``b""`` when done."""
        while len(self._buffer) < size and not self._exhausted:
            try:
                part = await self._iterator.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                break
            if part:
                self._buffer.extend(part)
                self.bytes_read += len(part)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def read_all(self) -> bytes:
        parts = []
        while True:
            data = await self.read_at_least(DEFAULT_QUANTUM)
            if not data:
                return b"".join(parts)
            parts.append(data)


@dataclass
class IngestResult:
    requested: IndexRange
    written: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return len(self.written) == len(self.requested)


async def ingest_range(
    store: ChunkStore,
    reader: BodyReader,
    index_range: IndexRange,
    quantum: int = DEFAULT_QUANTUM,
) -> IngestResult:
    """Write one quantum-sized read per index from ``start`` to ``end``.

    The stream running dry before ``end`` stops ingestion without error; the
    remaining indexes are left untouched. Chunks already written stay written
    if a later upsert fails.
    """
    result = IngestResult(requested=index_range)
    for index in index_range:
        data = await reader.read_at_least(quantum)
        if not data:
            break
        await store.upsert(index, data)
        result.written.append(index)
        LOG.debug("wrote chunk %d (%d bytes)", index, len(data))

    if not result.complete:
        LOG.warning(
            "body ended early: wrote %d of %d chunks for range %d-%d",
            len(result.written),
            len(index_range),
            index_range.start,
            index_range.end,
        )
    return result
