"""Chunked blob store with one serializing actor per object key."""

from .actor import ShardActor, ShardRegistry
from .routing import IndexRange
from .service import BlockStoreService
from .settings import StoreSettings
from .store import S3Backend, S3ChunkStore, SqliteBackend, SqliteChunkStore

__all__ = [
    "BlockStoreService",
    "IndexRange",
    "S3Backend",
    "S3ChunkStore",
    "ShardActor",
    "ShardRegistry",
    "SqliteBackend",
    "SqliteChunkStore",
    "StoreSettings",
]
