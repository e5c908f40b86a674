from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import AuthorizationPayloadError
from .headers import prepare_forward_headers

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
else:  # pragma: no cover
    Iterable = Mapping = Any

LOG = logging.getLogger("b2_download_gateway.auth")


class AuthorizationPayload(BaseModel):
    """The part of the GameVault game resource the gateway relies on."""

    model_config = ConfigDict(extra="ignore", strict=True)

    file_path: str
    title: str


@dataclass
class AuthorizationResult:
    status_code: int
    response: httpx.Response
    authorized: bool
    username: str | None = None
    payload: AuthorizationPayload | None = None


def username_from_authorization(header: str | None) -> str | None:
    """Return the user part of a Basic ``Authorization`` header, if any."""
    if not header:
        return None
    scheme, _, credentials = header.strip().partition(" ")
    if scheme.lower() != "basic" or not credentials:
        return None
    try:
        decoded = base64.b64decode(credentials.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    return decoded.split(":", 1)[0] or None


class Authorizer:
    """Check a download against the GameVault API.

    The download route is ``<resource>/download``; GameVault is asked for
    ``<resource>`` with the caller's headers, which both authorizes the caller
    and tells us where the file lives.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        origin: str,
        download_suffix: str = "/download",
        strict: bool = True,
    ):
        self._client = client
        self._origin = origin.rstrip("/")
        self._download_suffix = download_suffix
        self._strict = strict

    def is_authorized(self, status_code: int) -> bool:
        if self._strict:
            return status_code == 200
        return 200 <= status_code < 300

    def auth_url(self, path: str, query: str = "") -> str:
        resource = path
        if resource.endswith(self._download_suffix):
            resource = resource[: -len(self._download_suffix)]
        url = f"{self._origin}{resource or '/'}"
        if query:
            url = f"{url}?{query}"
        return url

    async def authorize(
        self,
        path: str,
        headers: Mapping[str, str] | Iterable[tuple[str, str]],
        query: str = "",
    ) -> AuthorizationResult:
        """Ask GameVault whether the caller may download ``path``.

        On failure the returned response is still open so it can be relayed
        verbatim; on success its body has been consumed.

        Raises:
            AuthorizationPayloadError: if an authorized response body is not
                JSON with string ``file_path`` and ``title`` fields.
        """
        # The body is decoded here, so only codings httpx supports may be offered.
        forwarded = [
            (name, value)
            for name, value in prepare_forward_headers(headers)
            if name.lower() != "accept-encoding"
        ]
        url = self.auth_url(path, query)
        request = self._client.build_request("GET", url, headers=forwarded)
        response = await self._client.send(request, stream=True)
        LOG.debug("authorization %s status=%s", url, response.status_code)

        if not self.is_authorized(response.status_code):
            return AuthorizationResult(
                status_code=response.status_code,
                response=response,
                authorized=False,
            )

        try:
            body = await response.aread()
        finally:
            await response.aclose()
        try:
            payload = AuthorizationPayload.model_validate_json(body)
        except ValidationError as exc:
            msg = f"Unusable authorization response from {url}: {exc}"
            raise AuthorizationPayloadError(msg) from exc

        authorization = None
        for name, value in forwarded:
            if name.lower() == "authorization":
                authorization = value
                break
        return AuthorizationResult(
            status_code=response.status_code,
            response=response,
            authorized=True,
            username=username_from_authorization(authorization),
            payload=payload,
        )
