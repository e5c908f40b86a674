from __future__ import annotations

import base64
import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, cast

import httpx
from litestar import Request
from litestar.types import HTTPScope

if TYPE_CHECKING:
    from litestar.response import Response


BUCKET = "mybucket"
ENDPOINT = "s3.us-west-002.backblazeb2.com"
B2_HOST = f"{BUCKET}.{ENDPOINT}"
GV_HOST = "gamevault.example.com"
WEBHOOK_HOST = "discord.example.com"
WEBHOOK = f"https://{WEBHOOK_HOST}/api/webhooks/1/abc"
AUTH_PREFIX = "/api/games/"


def streamed(
    status_code: int, body: bytes = b"", headers: httpx.Headers | dict | None = None
) -> httpx.Response:
    """Build a response whose body is still unread, like one off the network."""
    return httpx.Response(
        status_code, headers=headers, stream=httpx.ByteStream(body)
    )


def basic_auth(username: str, password: str = "secret") -> str:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {token}"


@dataclass
class Upstream:
    """Scripted upstream servers behind an ``httpx.MockTransport``.

    Object-store responses are served in order from ``b2_responses``; the last
    one repeats once the script runs out. GameVault requests under
    ``auth_prefix`` get the authorization answer, any other GameVault path
    gets the origin answer.
    """

    auth_status: int = 200
    auth_json: dict | None = None
    auth_body: bytes | None = None
    b2_responses: list[httpx.Response] = field(default_factory=list)
    auth_prefix: str = AUTH_PREFIX
    b2_error: Exception | None = None
    origin_status: int = 200
    origin_body: bytes = b"origin"
    webhook_status: int = 204
    webhook_error: Exception | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    def calls(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    @property
    def b2_calls(self) -> list[httpx.Request]:
        return self.calls(B2_HOST)

    @property
    def webhook_calls(self) -> list[httpx.Request]:
        return self.calls(WEBHOOK_HOST)

    @property
    def gv_calls(self) -> list[httpx.Request]:
        return self.calls(GV_HOST)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == B2_HOST:
            if self.b2_error is not None:
                raise self.b2_error
            index = min(len(self.b2_calls), len(self.b2_responses)) - 1
            scripted = self.b2_responses[index]
            return streamed(scripted.status_code, scripted.content, scripted.headers)
        if host == WEBHOOK_HOST:
            if self.webhook_error is not None:
                raise self.webhook_error
            return httpx.Response(self.webhook_status)
        if host == GV_HOST:
            if not request.url.path.startswith(self.auth_prefix):
                return streamed(self.origin_status, self.origin_body)
            if self.auth_body is not None:
                return streamed(self.auth_status, self.auth_body)
            body = self.auth_json
            if body is None:
                body = {"message": "Not Found"}
            return streamed(
                self.auth_status,
                json.dumps(body).encode(),
                {"Content-Type": "application/json"},
            )
        return httpx.Response(599)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def make_request(
    path: str,
    method: str = "GET",
    headers: list[tuple[str, str]] | None = None,
    query: str = "",
    body: bytes = b"",
) -> Request:
    scope = cast(
        HTTPScope,
        {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": query.encode("latin-1"),
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in headers or []
            ],
        },
    )

    async def receive():
        return {"type": "http.request", "body": body}

    return Request(scope=scope, receive=receive)


async def read_body(response: Response) -> bytes:
    body_chunks = []
    iterator = getattr(response, "iterator", None)
    if callable(iterator):
        iterator = cast(Callable[[], AsyncIterator[bytes]], iterator)()
    if iterator is not None:
        async for chunk in iterator:
            body_chunks.append(chunk)
    return b"".join(body_chunks)


def lowered_headers(response: Response) -> dict[str, str]:
    return {key.lower(): value for key, value in response.headers.items()}
