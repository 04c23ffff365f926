"""Chunk persistence for a single object key.

Two interchangeable backends implement :class:`ChunkStore`:

``SqliteChunkStore``
    one SQLite database per key holding ``blobs(i INTEGER PRIMARY KEY,
    blob BLOB)``. Upserts use ``ON CONFLICT ... DO UPDATE``; delete-all drops
    the table and removes the database file.

``S3ChunkStore``
    one object per chunk named ``{prefix}{shard_id}/BLOCK_{index}`` in a
    shared bucket. S3 PUT already replaces; delete-all enumerates the key's
    prefix and removes every object under it.

Stores are not safe for concurrent use on their own. The owning
:class:`~blockstore.actor.ShardActor` serializes every call.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import aiosqlite
import anyio
from anyio import to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from .settings import StoreSettings

LOG = logging.getLogger("blockstore.store")

_MISSING_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_DELETE_BATCH = 1000

_CREATE_TABLE = "CREATE TABLE IF NOT EXISTS blobs (i INTEGER PRIMARY KEY, blob BLOB)"
_UPSERT = (
    "INSERT INTO blobs (i, blob) VALUES (?, ?) "
    "ON CONFLICT (i) DO UPDATE SET blob = excluded.blob"
)
_SELECT = "SELECT blob FROM blobs WHERE i = ?"


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(partial(func, *args, **kwargs))


class ChunkDeleteError(Exception):
    """S3 refused to delete some of a key's chunk objects."""

    def __init__(self, namespace: str, errors: list[dict[str, Any]]):
        first = errors[0]
        super().__init__(
            f"failed to delete {len(errors)} object(s) under {namespace}: "
            f"{first.get('Key')} ({first.get('Code')}: {first.get('Message')})"
        )
        self.namespace = namespace
        self.errors = errors


def _error_code(error: ClientError) -> str | None:
    return error.response.get("Error", {}).get("Code")


class ChunkStore(Protocol):
    async def upsert(self, index: int, data: bytes) -> None:
        """Insert or replace the chunk at ``index``."""
        ...

    async def get(self, index: int) -> bytes | None:
        """Return the chunk at ``index`` or ``None`` when it was never written."""
        ...

    async def delete_all(self) -> None:
        """Remove every chunk and the backing structure for this key."""
        ...

    async def close(self) -> None: ...


class StorageBackend(Protocol):
    def store_for(self, shard_id: str) -> ChunkStore: ...

    def describe(self) -> str: ...

    async def close(self) -> None: ...


class SqliteChunkStore:
    """Chunks of one key in their own database file.

    A connection lives only for the duration of one call, so idle keys hold
    no file handle or worker thread.
    """

    def __init__(self, path: Path):
        self.path = path

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.path) as db:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            yield db

    async def upsert(self, index: int, data: bytes) -> None:
        async with self._connection() as db:
            await db.execute(_UPSERT, (index, data))
            await db.commit()

    async def get(self, index: int) -> bytes | None:
        if not self.path.exists():
            return None
        async with self._connection() as db, db.execute(_SELECT, (index,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return bytes(row[0])

    async def delete_all(self) -> None:
        if self.path.exists():
            async with self._connection() as db:
                await db.execute("DROP TABLE IF EXISTS blobs")
                await db.commit()
        for suffix in ("", "-wal", "-shm", "-journal"):
            Path(f"{self.path}{suffix}").unlink(missing_ok=True)

    async def close(self) -> None:
        return None


class SqliteBackend:
    def __init__(self, data_dir: Path):
        self.data_dir = data_dir

    def store_for(self, shard_id: str) -> SqliteChunkStore:
        return SqliteChunkStore(self.data_dir / f"{shard_id}.sqlite3")

    def describe(self) -> str:
        return f"sqlite ({self.data_dir})"

    async def close(self) -> None:
        return None


class S3Backend:
    def __init__(self, client: Any, bucket: str, prefix: str = "", location: str = ""):
        self.client = client
        self.bucket = bucket
        self.prefix = prefix
        self.location = location
        self._bucket_ready = False
        self._bucket_lock = anyio.Lock()

    @classmethod
    def from_settings(cls, settings: StoreSettings) -> S3Backend:
        session = Session(
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            aws_session_token=settings.s3_session_token,
            region_name=settings.s3_region,
        )
        client = session.client(
            "s3",
            endpoint_url=settings.s3_endpoint,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 3},
                s3={"addressing_style": settings.s3_addressing_style},
            ),
        )
        return cls(
            client,
            settings.s3_bucket,
            prefix=settings.s3_prefix,
            location=settings.s3_region,
        )

    def store_for(self, shard_id: str) -> S3ChunkStore:
        return S3ChunkStore(self, f"{self.prefix}{shard_id}/")

    def describe(self) -> str:
        return f"s3 (bucket={self.bucket}, prefix={self.prefix or '-'})"

    async def ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        async with self._bucket_lock:
            if self._bucket_ready:
                return
            try:
                await _run_sync(self.client.head_bucket, Bucket=self.bucket)
            except ClientError as error:
                if _error_code(error) not in _MISSING_CODES:
                    raise
                create_kwargs: dict[str, Any] = {"Bucket": self.bucket}
                if self.location and self.location != "us-east-1":
                    create_kwargs["CreateBucketConfiguration"] = {
                        "LocationConstraint": self.location
                    }
                try:
                    await _run_sync(self.client.create_bucket, **create_kwargs)
                except ClientError as create_error:
                    if _error_code(create_error) not in {
                        "BucketAlreadyOwnedByYou",
                        "BucketAlreadyExists",
                    }:
                        raise
                LOG.info("created chunk bucket %s", self.bucket)
            self._bucket_ready = True

    async def close(self) -> None:
        await _run_sync(self.client.close)


class S3ChunkStore:
    def __init__(self, backend: S3Backend, namespace: str):
        self._backend = backend
        self.namespace = namespace

    def chunk_key(self, index: int) -> str:
        return f"{self.namespace}BLOCK_{index}"

    async def upsert(self, index: int, data: bytes) -> None:
        await self._backend.ensure_bucket()
        await _run_sync(
            self._backend.client.put_object,
            Bucket=self._backend.bucket,
            Key=self.chunk_key(index),
            Body=data,
        )

    async def get(self, index: int) -> bytes | None:
        client = self._backend.client
        try:
            result = await _run_sync(
                client.get_object, Bucket=self._backend.bucket, Key=self.chunk_key(index)
            )
        except ClientError as error:
            if _error_code(error) in _MISSING_CODES:
                return None
            raise
        body = result["Body"]
        try:
            return await _run_sync(body.read)
        finally:
            await _run_sync(body.close)

    async def delete_all(self) -> None:
        client = self._backend.client
        list_kwargs: dict[str, Any] = {
            "Bucket": self._backend.bucket,
            "Prefix": self.namespace,
        }
        removed = 0
        while True:
            try:
                page = await _run_sync(client.list_objects_v2, **list_kwargs)
            except ClientError as error:
                if _error_code(error) in _MISSING_CODES:
                    return
                raise
            keys = [{"Key": item["Key"]} for item in page.get("Contents", [])]
            for offset in range(0, len(keys), _DELETE_BATCH):
                batch = keys[offset : offset + _DELETE_BATCH]
                response = await _run_sync(
                    client.delete_objects,
                    Bucket=self._backend.bucket,
                    Delete={"Objects": batch, "Quiet": True},
                )
                if response.get("Errors"):
                    raise ChunkDeleteError(self.namespace, response["Errors"])
                removed += len(batch)
            if not page.get("IsTruncated"):
                break
            list_kwargs["ContinuationToken"] = page["NextContinuationToken"]
        LOG.debug("deleted %d chunk objects under %s", removed, self.namespace)

    async def close(self) -> None:
        return None


def build_backend(settings: StoreSettings) -> StorageBackend:
    """Select the storage backend named in ``settings``."""
    if settings.backend == "s3":
        return S3Backend.from_settings(settings)
    return SqliteBackend(settings.data_dir)
