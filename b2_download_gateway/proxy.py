from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from litestar.response import Response, Stream

from .auth import Authorizer
from .errors import GatewayError
from .headers import HeaderFilter, prepare_forward_headers, prepare_response_headers
from .notify import DownloadDescriptor, Notifier
from .paths import PathResolver
from .retry import ProxyRetryEngine, RetryPolicy
from .settings import GatewaySettings, load_settings_from_env
from .signing import RequestSigner

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from litestar import Request
else:  # pragma: no cover
    AsyncIterator = Awaitable = Callable = Any

LOG = logging.getLogger("b2_download_gateway.proxy")

DOWNLOAD_METHODS = frozenset({"GET", "HEAD"})


class DownloadGateway:
    def __init__(
        self,
        settings: GatewaySettings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._sleep = sleep
        self._http_client: httpx.AsyncClient | None = None
        self._resolver = PathResolver(
            bucket_name=settings.bucket_name,
            endpoint=settings.b2_endpoint,
            internal_folder=settings.internal_folder,
            upload_folder=settings.upload_folder,
        )
        self._header_filter = HeaderFilter(
            allowed=settings.allowed_headers,
            provider_prefix=settings.provider_header_prefix,
        )
        self._signer = RequestSigner(
            access_key_id=settings.access_key_id,
            secret_key=settings.secret_key,
            region=settings.region,
        )
        self._policy = RetryPolicy(
            range_attempts=settings.range_retry_attempts,
            transient_attempts=settings.transient_retry_attempts,
            delay=settings.retry_delay,
        )
        self._authorizer: Authorizer | None = None
        self._engine: ProxyRetryEngine | None = None

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    async def startup(self) -> None:
        self._http_client = httpx.AsyncClient(
            base_url=self._settings.gv_origin,
            timeout=httpx.Timeout(60.0, read=300.0),
            trust_env=False,
            transport=self._transport,
        )
        self._authorizer = Authorizer(
            self._http_client,
            origin=self._settings.gv_origin,
            download_suffix=self._settings.download_suffix,
            strict=self._settings.auth_strict,
        )
        notifier = Notifier(self._http_client, self._settings.webhook_url)
        engine_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            engine_kwargs["sleep"] = self._sleep
        self._engine = ProxyRetryEngine(
            self._http_client, self._policy, notifier, **engine_kwargs
        )
        LOG.info(
            "B2 download gateway ready (bucket=%s, endpoint=%s, region=%s, "
            "origin=%s, notifications=%s)",
            self._settings.bucket_name,
            self._settings.b2_endpoint,
            self._settings.region,
            self._settings.gv_origin,
            "enabled" if notifier.enabled else "disabled",
        )

    async def shutdown(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._authorizer = None
            self._engine = None

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        if self._http_client is None:
            message = "gateway not initialised"
            raise RuntimeError(message)

        download_path = self.download_route(path)
        if download_path is not None and request.method not in DOWNLOAD_METHODS:
            LOG.debug("rejecting method=%s path=%s", request.method, path)
            return Response(
                content=b"",
                status_code=405,
                headers={"Allow": ", ".join(sorted(DOWNLOAD_METHODS))},
            )

        try:
            if download_path is None:
                LOG.debug("passing through path=%s", path)
                return await self._passthrough(request, path)
            return await self._handle_download(request, download_path)
        except GatewayError as error:
            LOG.warning("bad gateway for %s: %s", path, error)
            return Response(content=str(error), status_code=502)
        except httpx.TransportError:
            LOG.exception("upstream request failed for %s", path)
            return Response(content="Bad Gateway", status_code=502)

    def is_download_path(self, path: str) -> bool:
        return self.download_route(path) is not None

    def download_route(self, path: str) -> str | None:
        """Return ``path`` with trailing slashes removed, or None for other routes."""
        route = path.rstrip("/") or "/"
        if route.endswith(self._settings.download_suffix):
            return route
        return None

    async def _handle_download(self, request: Request, path: str) -> Response:
        assert self._authorizer is not None
        assert self._engine is not None

        query = self._query_string(request)
        result = await self._authorizer.authorize(path, request.headers, query)
        if not result.authorized:
            LOG.info(
                "authorization refused for %s status=%s", path, result.status_code
            )
            if self._settings.auth_failure_mode == "passthrough":
                await result.response.aclose()
                return await self._passthrough(request, path)
            return self._to_streaming_response(result.response)

        payload = result.payload
        assert payload is not None
        location = self._resolver.locate(payload.file_path)
        headers = self._header_filter.filter(request.headers)
        signed = self._signer.sign(request.method, location.url, headers)
        LOG.debug(
            "resolved %s to s3://%s/%s (%s)",
            payload.file_path,
            location.bucket,
            location.key,
            location.url,
        )

        download = DownloadDescriptor(
            username=result.username, title=payload.title, key=location.key
        )
        response = await self._engine.execute(signed, download)
        return self._to_streaming_response(response)

    async def _passthrough(self, request: Request, path: str) -> Response:
        assert self._http_client is not None
        origin_request = await self._build_httpx_request(request, path)
        response = await self._http_client.send(origin_request, stream=True)
        return self._to_streaming_response(response)

    async def _build_httpx_request(self, request: Request, path: str) -> httpx.Request:
        assert self._http_client is not None
        url = path or "/"
        query = self._query_string(request)
        if query:
            url = f"{url}?{query}"

        headers = prepare_forward_headers(request.headers)
        content = None
        if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
            content = await self._build_content_bytes(request)

        return self._http_client.build_request(
            method=request.method,
            url=url,
            headers=headers,
            content=content,
        )

    @staticmethod
    def _query_string(request: Request) -> str:
        raw = request.scope.get("query_string") or b""
        return raw.decode("latin-1")

    async def _build_content_bytes(self, request: Request) -> bytes:
        """Read the entire request body as bytes directly from ASGI scope."""
        body_parts = []
        receive = request.receive

        while True:
            message = await receive()
            if message["type"] == "http.request":
                body = message.get("body", b"")
                if body:
                    body_parts.append(body)
                if not message.get("more_body", False):
                    break
            elif message["type"] == "http.disconnect":
                break

        return b"".join(body_parts)

    def _to_streaming_response(self, response: httpx.Response) -> Response:
        headers = prepare_response_headers(response.headers.raw)

        async def iterator() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_raw():
                    yield chunk
            finally:
                await response.aclose()

        return Stream(
            content=iterator(), status_code=response.status_code, headers=headers
        )

    @classmethod
    def from_env(cls) -> DownloadGateway:
        """Create a DownloadGateway instance from environment variables.

        Returns:
            DownloadGateway configured from environment variables.
        """
        return cls(load_settings_from_env())
