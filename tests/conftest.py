from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast
from uuid import uuid4

import pytest
from botocore.exceptions import ClientError
from litestar import Request
from litestar.types import HTTPScope

from blockstore import BlockStoreService, S3Backend, SqliteBackend, StoreSettings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Generator, Sequence
    from pathlib import Path

    from pytest_databases._service import DockerService
    from pytest_databases.types import ServiceContainer


def _client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class _Body:
    def __init__(self, data: bytes):
        self._data = data
        self.closed = False

    def read(self) -> bytes:
        return self._data

    def close(self) -> None:
        self.closed = True


class FakeS3Client:
    """In-memory stand-in for the handful of boto3 S3 calls the store makes."""

    def __init__(self, page_size: int = 2):
        self.buckets: dict[str, dict[str, bytes]] = {}
        self.page_size = page_size
        self.calls: list[str] = []

    def _bucket(self, name: str, operation: str) -> dict[str, bytes]:
        if name not in self.buckets:
            raise _client_error("NoSuchBucket", 404, operation)
        return self.buckets[name]

    def head_bucket(self, Bucket: str) -> dict[str, Any]:
        self.calls.append("head_bucket")
        if Bucket not in self.buckets:
            raise _client_error("404", 404, "HeadBucket")
        return {}

    def create_bucket(self, Bucket: str, **kwargs: Any) -> dict[str, Any]:
        self.calls.append("create_bucket")
        self.buckets.setdefault(Bucket, {})
        return {}

    def put_object(self, Bucket: str, Key: str, Body: bytes) -> dict[str, Any]:
        self.calls.append("put_object")
        self._bucket(Bucket, "PutObject")[Key] = bytes(Body)
        return {}

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.calls.append("get_object")
        objects = self._bucket(Bucket, "GetObject")
        if Key not in objects:
            raise _client_error("NoSuchKey", 404, "GetObject")
        return {"Body": _Body(objects[Key]), "ContentLength": len(objects[Key])}

    def list_objects_v2(
        self, Bucket: str, Prefix: str = "", ContinuationToken: str | None = None
    ) -> dict[str, Any]:
        self.calls.append("list_objects_v2")
        keys = sorted(
            key for key in self._bucket(Bucket, "ListObjectsV2") if key.startswith(Prefix)
        )
        if ContinuationToken is not None:
            keys = [key for key in keys if key > ContinuationToken]
        page = keys[: self.page_size]
        result: dict[str, Any] = {"IsTruncated": len(keys) > self.page_size}
        if page:
            result["Contents"] = [{"Key": key} for key in page]
        if result["IsTruncated"]:
            result["NextContinuationToken"] = page[-1]
        return result

    def delete_objects(self, Bucket: str, Delete: dict[str, Any]) -> dict[str, Any]:
        self.calls.append("delete_objects")
        objects = self._bucket(Bucket, "DeleteObjects")
        for item in Delete["Objects"]:
            objects.pop(item["Key"], None)
        return {}

    def close(self) -> None:
        self.calls.append("close")


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "chunks"


@pytest.fixture
def settings(data_dir: Path) -> StoreSettings:
    return StoreSettings(BLOCKSTORE_DATA_DIR=data_dir, BLOCKSTORE_CHUNK_QUANTUM=4)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture(params=["sqlite", "s3"])
def backend(request, data_dir: Path, fake_s3: FakeS3Client):
    """Each storage backend in turn; tests using it must pass for both."""
    if request.param == "s3":
        return S3Backend(fake_s3, "blockstore-test", prefix="t/")
    return SqliteBackend(data_dir)


@pytest.fixture
async def service(
    settings: StoreSettings, backend
) -> AsyncGenerator[BlockStoreService]:
    service = BlockStoreService(settings, backend=backend)
    await service.startup()
    yield service
    await service.shutdown()


@pytest.fixture
def set_env() -> Generator[Callable[..., None]]:
    """Set environment variables for the duration of a test."""
    original: dict[str, str | None] = {}

    def _set(**kwargs: str) -> None:
        for key, value in kwargs.items():
            original.setdefault(key, os.environ.get(key))
            os.environ[key] = value

    yield _set

    # Restore original values
    for key, value in original.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool


@pytest.fixture(scope="session")
def minio_access_key() -> str:
    return os.getenv("MINIO_ACCESS_KEY", "minio")


@pytest.fixture(scope="session")
def minio_secret_key() -> str:
    return os.getenv("MINIO_SECRET_KEY", "minio123")


@pytest.fixture(scope="session")
def minio_secure() -> bool:
    return os.getenv("MINIO_SECURE", "false").lower() in {
        "true",
        "1",
        "yes",
        "y",
        "t",
        "on",
    }


@pytest.fixture(scope="session")
def minio_service_name() -> str:
    """Override to use a custom name for the MinIO container."""
    return "blockstore-minio"


@pytest.fixture(scope="session")
def minio_service(
    request: pytest.FixtureRequest,
    minio_access_key: str,
    minio_secret_key: str,
    minio_secure: bool,
    minio_service_name: str,
) -> Generator[MinioService]:
    """A throwaway MinIO server in Docker.

    Only started when ``BLOCKSTORE_TEST_MINIO`` is set and pytest-databases
    is installed; otherwise every test using it is skipped.
    """
    if not os.getenv("BLOCKSTORE_TEST_MINIO"):
        pytest.skip("set BLOCKSTORE_TEST_MINIO=1 to run against MinIO in Docker")
    pytest.importorskip("pytest_databases")
    from urllib.error import URLError
    from urllib.request import Request as UrlRequest
    from urllib.request import urlopen

    docker_service: DockerService = request.getfixturevalue("docker_service")

    def check(_service: ServiceContainer) -> bool:
        scheme = "https" if minio_secure else "http"
        url = f"{scheme}://{_service.host}:{_service.port}/minio/health/ready"
        try:
            with urlopen(url=UrlRequest(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    with docker_service.run(
        image="quay.io/minio/minio",
        name=minio_service_name,
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env={
            "MINIO_ROOT_USER": minio_access_key,
            "MINIO_ROOT_PASSWORD": minio_secret_key,
        },
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"{service.host}:{service.port}",
            access_key=minio_access_key,
            secret_key=minio_secret_key,
            secure=minio_secure,
        )


@pytest.fixture
def minio_settings(minio_service: MinioService, data_dir: Path) -> StoreSettings:
    """Settings for the S3 backend pointed at a fresh bucket on the MinIO server."""
    scheme = "https" if minio_service.secure else "http"
    return StoreSettings(
        BLOCKSTORE_BACKEND="s3",
        BLOCKSTORE_DATA_DIR=data_dir,
        BLOCKSTORE_CHUNK_QUANTUM=4,
        BLOCKSTORE_S3_ENDPOINT=f"{scheme}://{minio_service.endpoint}",
        BLOCKSTORE_S3_ACCESS_KEY=minio_service.access_key,
        BLOCKSTORE_S3_SECRET_KEY=minio_service.secret_key,
        BLOCKSTORE_S3_BUCKET=f"blockstore-{uuid4().hex[:12]}",
        BLOCKSTORE_S3_PREFIX="it/",
    )


def _make_request(
    method: str,
    path: str,
    body: Sequence[bytes] | None = None,
    headers: dict[str, str] | None = None,
    *,
    disconnect: bool = False,
) -> Request:
    """Build a litestar request whose body arrives as the given ASGI messages.

    With ``disconnect`` every part announces more body, and the client then
    goes away instead of finishing.
    """
    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers or {}).items()
    ]
    parts = list(body or [])
    if body is not None and headers is None:
        raw_headers.append((b"content-length", str(sum(map(len, parts))).encode()))
    scope = cast(
        HTTPScope,
        {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": raw_headers,
        },
    )
    messages = [
        {
            "type": "http.request",
            "body": part,
            "more_body": disconnect or i < len(parts) - 1,
        }
        for i, part in enumerate(parts)
    ] or [{"type": "http.request", "body": b"", "more_body": False}]

    async def receive():
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    return Request(scope=scope, receive=receive)


@pytest.fixture
def make_request():
    return _make_request
