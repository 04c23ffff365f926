from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import unquote

from litestar import Litestar, Request, get
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .service import BlockStoreService

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send


prometheus_config = PrometheusConfig(app_name="blockstore", prefix="blockstore")


def request_path(scope: Scope) -> str:
    """Return the path exactly as the client sent it.

    The root mount rewrites ``scope["path"]`` (leading slash dropped, trailing
    slash added), which would erase the index segment, so the undecoded
    ``raw_path`` is used whenever the server provides it.
    """
    raw_path = scope.get("raw_path")
    if raw_path:
        path = unquote(raw_path.decode("latin-1").split("?", 1)[0])
    else:
        path = scope.get("path", "/")
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def create_app(service: BlockStoreService | None = None) -> Litestar:
    """Create the block store ASGI application."""
    store = service if service is not None else BlockStoreService.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def block_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        response = await store.handle(request, request_path(scope))
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await store.startup()

    async def shutdown(app: Litestar) -> None:
        await store.shutdown()

    return Litestar(
        route_handlers=[health, block_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        middleware=[prometheus_config.middleware],
    )


app = create_app()
