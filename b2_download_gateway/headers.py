from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
else:  # pragma: no cover
    Iterable = Mapping = Any

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# These appear in the inbound request but never reach the object store
# unchanged, so a signature over them would not validate. The edge rewrites
# accept-encoding between the inbound and outbound request.
UNSIGNABLE = frozenset(
    {
        "x-forwarded-proto",
        "x-real-ip",
        "accept-encoding",
        "host",
        "content-length",
    }
)


def _items(headers: Mapping[str, str] | Iterable[tuple[str, str]]):
    items = getattr(headers, "multi_items", None) or getattr(headers, "items", None)
    if items is not None:
        return items()
    return headers


class HeaderFilter:
    """Select the inbound headers that can be signed and forwarded."""

    def __init__(
        self,
        allowed: Iterable[str] | None = None,
        provider_prefix: str = "cf-",
    ):
        self._allowed = (
            frozenset(name.lower() for name in allowed) if allowed is not None else None
        )
        self._provider_prefix = provider_prefix.lower()

    def keep(self, name: str) -> bool:
        lowered = name.lower()
        if lowered in UNSIGNABLE or lowered in HOP_BY_HOP:
            return False
        if self._provider_prefix and lowered.startswith(self._provider_prefix):
            return False
        return self._allowed is None or lowered in self._allowed

    def filter(
        self, headers: Mapping[str, str] | Iterable[tuple[str, str]]
    ) -> dict[str, str]:
        """Return the kept headers keyed by lower-cased name.

        Repeated headers are folded into one comma-separated value.
        """
        filtered: dict[str, str] = {}
        for name, value in _items(headers):
            if not self.keep(name):
                continue
            lowered = name.lower()
            if lowered in filtered:
                filtered[lowered] = f"{filtered[lowered]}, {value}"
            else:
                filtered[lowered] = value
        return filtered


def prepare_forward_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Headers for requests relayed to the GameVault origin.

    ``host`` is left to the HTTP client so it matches the target URL.
    """
    return [
        (name, value)
        for name, value in _items(headers)
        if name.lower() not in HOP_BY_HOP and name.lower() not in {"host", "content-length"}
    ]


def prepare_response_headers(headers: Iterable[tuple[bytes, bytes]]) -> dict[str, str]:
    prepared: dict[str, str] = {}
    for key_bytes, value_bytes in headers:
        key = key_bytes.decode("latin-1")
        value = value_bytes.decode("latin-1")
        if key.lower() in HOP_BY_HOP:
            continue
        prepared[key] = value
    return prepared
