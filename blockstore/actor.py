from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import anyio

from .errors import NeedsBody, NoContentLength
from .ingest import DEFAULT_QUANTUM, BodyReader, ingest_range
from .routing import shard_id_for

if TYPE_CHECKING:
    from collections.abc import AsyncIterable

    from .routing import IndexRange
    from .store import ChunkStore, StorageBackend

LOG = logging.getLogger("blockstore.actor")


@dataclass(frozen=True)
class WriteResult:
    single: bool
    written: tuple[int, ...]
    bytes_read: int


def parse_declared_length(value: str | None) -> int:
    if value is None:
        raise NoContentLength("Content-Length header missing")
    try:
        length = int(value.strip())
    except ValueError:
        raise NoContentLength(f"Content-Length not numeric: {value!r}") from None
    if length < 0:
        raise NoContentLength(f"Content-Length negative: {value!r}")
    return length


class ShardActor:
    """Exclusive owner of one object key's chunks.

    Every operation holds the actor's lock from start to finish, including
    the time spent reading a request body, so operations on one key never
    interleave. Actors for different keys share nothing.
    """

    def __init__(
        self,
        key: str,
        store: ChunkStore,
        *,
        location_hint: str,
        quantum: int = DEFAULT_QUANTUM,
    ):
        self.key = key
        self.shard_id = shard_id_for(key)
        self.location_hint = location_hint
        self.quantum = quantum
        self._store = store
        self._lock = anyio.Lock()

    async def write(
        self,
        index_range: IndexRange,
        body: AsyncIterable[bytes] | None,
        declared_length: str | None = None,
    ) -> WriteResult:
        if body is None:
            raise NeedsBody
        length = None
        if not index_range.is_single:
            length = parse_declared_length(declared_length)
        async with self._lock:
            reader = BodyReader(body)
            if index_range.is_single:
                data = await reader.read_all()
                await self._store.upsert(index_range.start, data)
                LOG.debug(
                    "key=%s wrote chunk %d (%d bytes)",
                    self.key,
                    index_range.start,
                    len(data),
                )
                return WriteResult(
                    single=True,
                    written=(index_range.start,),
                    bytes_read=reader.bytes_read,
                )

            LOG.debug(
                "key=%s streaming range %d-%d (declared %d bytes)",
                self.key,
                index_range.start,
                index_range.end,
                length,
            )
            result = await ingest_range(self._store, reader, index_range, self.quantum)
            return WriteResult(
                single=False,
                written=tuple(result.written),
                bytes_read=reader.bytes_read,
            )

    async def read(self, index: int) -> bytes | None:
        async with self._lock:
            return await self._store.get(index)

    async def reset(self) -> int:
        async with self._lock:
            await self._store.delete_all()
        LOG.info("key=%s freed all chunks", self.key)
        return 0

    async def close(self) -> None:
        async with self._lock:
            await self._store.close()


class ShardRegistry:
    """Lazily creates and keeps one :class:`ShardActor` per object key."""

    def __init__(self, backend: StorageBackend, quantum: int = DEFAULT_QUANTUM):
        self.backend = backend
        self.quantum = quantum
        self._actors: dict[str, ShardActor] = {}

    def __len__(self) -> int:
        return len(self._actors)

    def actor_for(self, key: str, location_hint: str) -> ShardActor:
        shard_id = shard_id_for(key)
        actor = self._actors.get(shard_id)
        if actor is None:
            actor = ShardActor(
                key,
                self.backend.store_for(shard_id),
                location_hint=location_hint,
                quantum=self.quantum,
            )
            self._actors[shard_id] = actor
            LOG.debug(
                "created actor key=%s shard=%s hint=%s", key, shard_id, location_hint
            )
        return actor

    async def close(self) -> None:
        for actor in self._actors.values():
            await actor.close()
        self._actors.clear()
        await self.backend.close()
