"""Object key resolution and upstream URL composition.

GameVault reports the file path of a game as it sees it on disk, e.g.
``/files/rpg/game.zip``. The bucket is mounted (usually through rclone) at the
internal folder, and some tooling also keeps the bucket name as the first
folder. The key inside the bucket is what remains after stripping those
prefixes, in order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import quote

from .errors import UnsafeObjectKeyError

if TYPE_CHECKING:
    from collections.abc import Iterable

SECURE_SCHEME = "https"
SECURE_PORT = 443

ENDPOINT_PATTERN = re.compile(
    r"^s3\.(?P<region>[a-z0-9-]+)\.(?P<provider>[a-z0-9-]+)\.com$", re.IGNORECASE
)

_UNSAFE_SEGMENTS = {".", ".."}


def extract_region(endpoint: str) -> str:
    """Return the region of an ``s3.<region>.<provider>.com`` endpoint.

    Raises:
        ValueError: if the endpoint does not follow that pattern.
    """
    match = ENDPOINT_PATTERN.match(endpoint)
    if match is None:
        msg = f"Cannot extract a region from endpoint {endpoint!r}"
        raise ValueError(msg)
    return match.group("region")


@dataclass(frozen=True)
class StripPrefixRule:
    """Remove ``prefix`` from the start of a path when present."""

    prefix: str

    def apply(self, path: str) -> str:
        if self.prefix and path.startswith(self.prefix):
            return path[len(self.prefix) :]
        return path


def build_rules(bucket_name: str, internal_folder: str) -> list[StripPrefixRule]:
    rules = [StripPrefixRule("/")]
    folder = internal_folder.strip("/")
    if folder:
        rules.append(StripPrefixRule(f"{folder}/"))
    bucket = bucket_name.strip("/")
    if bucket:
        rules.append(StripPrefixRule(f"{bucket}/"))
    return rules


def apply_rules(raw_file_path: str, rules: Iterable[StripPrefixRule]) -> str:
    key = raw_file_path
    for rule in rules:
        key = rule.apply(key)
    return key


def resolve(raw_file_path: str, bucket_name: str, internal_folder: str) -> str:
    """Compute the object key for a GameVault file path."""
    return apply_rules(raw_file_path, build_rules(bucket_name, internal_folder))


def check_key(key: str) -> str:
    if not key or key.endswith("/"):
        msg = f"File path does not name an object: {key!r}"
        raise UnsafeObjectKeyError(msg)
    if any(segment in _UNSAFE_SEGMENTS for segment in key.split("/")):
        msg = f"File path escapes the bucket folder: {key!r}"
        raise UnsafeObjectKeyError(msg)
    return key


@dataclass(frozen=True)
class ObjectLocation:
    bucket: str
    endpoint: str
    region: str
    key: str
    folder: str = ""

    @property
    def host(self) -> str:
        return f"{self.bucket}.{self.endpoint}"

    @property
    def path(self) -> str:
        # S3 canonical URIs encode everything but unreserved characters and "/".
        return quote(f"/{self.folder}{self.key}", safe="/~")

    @property
    def url(self) -> str:
        return f"{SECURE_SCHEME}://{self.host}:{SECURE_PORT}{self.path}"


class PathResolver:
    def __init__(
        self,
        bucket_name: str,
        endpoint: str,
        internal_folder: str = "files",
        upload_folder: str = "",
    ):
        self._bucket_name = bucket_name
        self._endpoint = endpoint
        self._region = extract_region(endpoint)
        self._rules = build_rules(bucket_name, internal_folder)
        folder = upload_folder.strip("/")
        self._upload_folder = f"{folder}/" if folder else ""

    @property
    def rules(self) -> list[StripPrefixRule]:
        return list(self._rules)

    def resolve(self, raw_file_path: str) -> str:
        return apply_rules(raw_file_path, self._rules)

    def locate(self, raw_file_path: str) -> ObjectLocation:
        """Resolve ``raw_file_path`` into the upstream object location.

        Raises:
            UnsafeObjectKeyError: if the key is empty or contains ``.`` or
                ``..`` segments.
        """
        key = check_key(self.resolve(raw_file_path))
        return ObjectLocation(
            bucket=self._bucket_name,
            endpoint=self._endpoint,
            region=self._region,
            key=key,
            folder=self._upload_folder,
        )
