from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Litestar, Request, get
from litestar.config.cors import CORSConfig
from litestar.handlers import asgi
from litestar.logging.config import LoggingConfig
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .proxy import DownloadGateway

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send


def client_path(scope: Scope) -> str:
    """Return the request path as the client sent it.

    The router strips trailing slashes from ``scope["path"]``, so prefer the
    untouched ``raw_path`` when the server provides one.
    """
    raw_path = scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
        root_path = scope.get("root_path", "")
        if root_path and path.startswith(root_path):
            path = path[len(root_path) :]
        return path or "/"
    path = scope.get("path", "/")
    if not path.startswith("/"):
        path = f"/{path}"
    return path.rstrip("/") or "/"


prometheus_config = PrometheusConfig(
    app_name="b2_download_gateway", prefix="b2_download_gateway"
)


def create_app(gateway: DownloadGateway | None = None) -> Litestar:
    """Create the download gateway ASGI application.

    Serve it with ``uvicorn --factory b2_download_gateway.app:create_app``.
    """
    if gateway is None:
        gateway = DownloadGateway.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def gateway_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        path = client_path(scope)
        response = await gateway.handle(request, path)
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await gateway.startup()

    async def shutdown(app: Litestar) -> None:
        await gateway.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Length", "Content-Range", "Accept-Ranges", "ETag"],
    )

    logging_config = LoggingConfig(
        root={"level": "INFO", "handlers": ["queue_listener"]},
        loggers={
            "b2_download_gateway": {
                "level": gateway.settings.log_level,
                "propagate": True,
            },
        },
    )

    return Litestar(
        route_handlers=[health, gateway_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        logging_config=logging_config,
        middleware=[prometheus_config.middleware],
    )
