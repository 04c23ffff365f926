from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from litestar.enums import MediaType
from litestar.response import Response

from .actor import ShardRegistry
from .errors import BlockStoreError, ClientDisconnected
from .routing import extract_key, parse_index, parse_index_range
from .settings import StoreSettings, load_settings_from_env
from .store import build_backend

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from litestar import Request

    from .store import StorageBackend

LOG = logging.getLogger("blockstore.service")

NOT_FOUND = "BLOCK_CHUNK_NOT_FOUND"
NOT_UNDERSTOOD = "I_DONT_UNDERSTAND"


class BlockStoreService:
    def __init__(self, settings: StoreSettings, backend: StorageBackend | None = None):
        self._settings = settings
        self._backend = backend if backend is not None else build_backend(settings)
        self.registry = ShardRegistry(self._backend, quantum=settings.chunk_quantum)

    async def startup(self) -> None:
        LOG.info(
            "block store ready (backend=%s, quantum=%d, default hint=%s)",
            self._backend.describe(),
            self._settings.chunk_quantum,
            self._settings.default_location_hint,
        )

    async def shutdown(self) -> None:
        await self.registry.close()

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        try:
            return await self._dispatch(request, path)
        except BlockStoreError as error:
            LOG.debug("rejected method=%s path=%s: %s", request.method, path, error)
            return self._text(error.code, error.status_code)
        except Exception as error:
            LOG.exception("request failed method=%s path=%s", request.method, path)
            return self._text(f"ERROR: {error}", 500)

    async def _dispatch(self, request: Request, path: str) -> Response:
        method = request.method
        if method not in {"DELETE", "PUT", "GET"}:
            return self._text(NOT_UNDERSTOOD, 404)

        key = extract_key(path)
        hint = request.headers.get("x-location-hint") or (
            self._settings.default_location_hint
        )
        actor = self.registry.actor_for(key, hint)

        if method == "DELETE":
            await actor.reset()
            return Response(content=b"", status_code=200)

        if method == "PUT":
            index_range = parse_index_range(path)
            body = self._body_stream(request) if self._has_body(request.headers) else None
            result = await actor.write(
                index_range, body, request.headers.get("content-length")
            )
            return self._text("ok" if result.single else "OK", 200)

        index = parse_index(path)
        data = await actor.read(index)
        if data is None:
            return self._text(NOT_FOUND, 404)
        return Response(
            content=data, status_code=200, media_type="application/octet-stream"
        )

    @staticmethod
    def _has_body(headers: Mapping[str, str]) -> bool:
        length = headers.get("content-length")
        if length is not None:
            return length.strip() != "0"
        return "transfer-encoding" in headers

    @staticmethod
    async def _body_stream(request: Request) -> AsyncIterator[bytes]:
        """Yield request body parts straight from the ASGI receive channel."""
        receive = request.receive
        while True:
            message = await receive()
            if message["type"] == "http.request":
                body = message.get("body", b"")
                if body:
                    yield body
                if not message.get("more_body", False):
                    break
            elif message["type"] == "http.disconnect":
                raise ClientDisconnected("client disconnected mid-body")

    @staticmethod
    def _text(content: str, status_code: int) -> Response:
        return Response(
            content=content.encode("utf-8"),
            status_code=status_code,
            media_type=MediaType.TEXT,
        )

    @classmethod
    def from_env(cls) -> BlockStoreService:
        """Create a BlockStoreService configured from environment variables."""
        return cls(load_settings_from_env())
