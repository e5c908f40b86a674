from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from botocore.auth import S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

if TYPE_CHECKING:
    from collections.abc import Mapping
else:  # pragma: no cover
    Mapping = Any


@dataclass(frozen=True)
class SignedRequest:
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def has_range(self) -> bool:
        return any(name.lower() == "range" for name in self.headers)


class RequestSigner:
    """Sign object-store requests with AWS Signature Version 4."""

    def __init__(
        self,
        access_key_id: str,
        secret_key: str,
        region: str,
        service: str = "s3",
    ):
        self._credentials = Credentials(access_key_id, secret_key)
        self._region = region
        self._service = service

    @property
    def region(self) -> str:
        return self._region

    def sign(self, method: str, url: str, headers: Mapping[str, str]) -> SignedRequest:
        request = AWSRequest(method=method, url=url, headers=dict(headers))
        S3SigV4Auth(self._credentials, self._service, self._region).add_auth(request)
        return SignedRequest(
            method=request.method,
            url=request.url,
            headers=dict(request.headers.items()),
        )
