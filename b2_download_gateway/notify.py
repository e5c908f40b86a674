from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

LOG = logging.getLogger("b2_download_gateway.notify")


@dataclass(frozen=True)
class DownloadDescriptor:
    """Who is downloading what, for notifications and log lines."""

    username: str | None
    title: str
    key: str

    @property
    def user(self) -> str:
        return self.username or "unknown user"


def success_message(download: DownloadDescriptor) -> str:
    return f"{download.user} has started downloading {download.title} [{download.key}]"


def error_message(download: DownloadDescriptor, status_code: int) -> str:
    return (
        f"{download.user} failed to download {download.title} [{download.key}]: "
        f"upstream returned {status_code}"
    )


class Notifier:
    """Post messages to a Discord-compatible webhook.

    Delivery is best-effort: errors are logged and never raised.
    """

    def __init__(self, client: httpx.AsyncClient, webhook_url: str | None):
        self._client = client
        self._webhook_url = webhook_url

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def send(self, content: str) -> bool:
        if not self._webhook_url:
            return False
        try:
            response = await self._client.post(
                self._webhook_url,
                json={"content": content},
                headers={"Content-Type": "application/json"},
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            LOG.warning("webhook delivery failed: %s", exc)
            return False
        if response.is_error:
            LOG.warning("webhook rejected notification status=%s", response.status_code)
            return False
        return True
