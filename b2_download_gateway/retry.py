"""Retry state machine for signed object-store requests.

Two failure patterns are retried with independent budgets:

* a range request answered with a 2xx status but no ``Content-Range`` header,
  which edge caches do for large objects on the first request;
* a transient server error (500 or 503).

The loop keeps going only while both budgets are positive. A final response is
always a genuine upstream response: exhausted budgets return the last one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import anyio
import httpx

from .notify import DownloadDescriptor, Notifier, error_message, success_message

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .signing import SignedRequest
else:  # pragma: no cover
    Awaitable = Callable = Any

LOG = logging.getLogger("b2_download_gateway.retry")

TRANSIENT_STATUSES = frozenset({500, 503})

# The backoff is awaited once, after this many transient failures.
DELAY_AFTER_FAILURES = 2


@dataclass(frozen=True)
class RetryPolicy:
    range_attempts: int = 3
    transient_attempts: int = 3
    delay: float = 1.0
    transient_statuses: frozenset[int] = TRANSIENT_STATUSES


@dataclass
class RetryState:
    range_remaining: int
    transient_remaining: int
    range_failures: int = 0
    transient_failures: int = 0
    attempts: int = 0
    response: httpx.Response | None = field(default=None, repr=False)

    @classmethod
    def start(cls, policy: RetryPolicy) -> RetryState:
        return cls(
            range_remaining=policy.range_attempts,
            transient_remaining=policy.transient_attempts,
        )

    @property
    def can_retry(self) -> bool:
        return self.range_remaining > 0 and self.transient_remaining > 0


class ProxyRetryEngine:
    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: RetryPolicy,
        notifier: Notifier | None = None,
        sleep: Callable[[float], Awaitable[Any]] = anyio.sleep,
    ):
        self._client = client
        self._policy = policy
        self._notifier = notifier
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self, signed: SignedRequest, download: DownloadDescriptor
    ) -> httpx.Response:
        """Send ``signed`` until it succeeds, fails terminally or a budget runs out.

        The returned response is streaming and its body has not been read.
        """
        state = await self.run(signed)
        response = state.response
        assert response is not None
        await self._report(signed, download, state)
        return response

    async def run(self, signed: SignedRequest) -> RetryState:
        state = RetryState.start(self._policy)
        wants_range = signed.has_range
        while True:
            response = await self._send(signed)
            state.attempts += 1
            state.response = response

            if wants_range and "content-range" in response.headers:
                return state

            transient = False
            if response.is_success:
                if not wants_range:
                    return state
                state.range_remaining -= 1
                state.range_failures += 1
            elif response.status_code in self._policy.transient_statuses:
                transient = True
                state.transient_remaining -= 1
                state.transient_failures += 1
            else:
                return state

            if not state.can_retry:
                return state

            # Abort the body transfer of the discarded attempt.
            await response.aclose()
            if transient and state.transient_failures == DELAY_AFTER_FAILURES:
                await self._sleep(self._policy.delay)

    async def _send(self, signed: SignedRequest) -> httpx.Response:
        request = self._client.build_request(
            method=signed.method,
            url=signed.url,
            headers=dict(signed.headers),
        )
        return await self._client.send(request, stream=True)

    async def _report(
        self, signed: SignedRequest, download: DownloadDescriptor, state: RetryState
    ) -> None:
        response = state.response
        assert response is not None
        status = response.status_code

        if state.range_remaining <= 0:
            LOG.error(
                "tried range request for %s %d times, but no content-range in "
                "response (status=%s)",
                signed.url,
                state.attempts,
                status,
            )
        elif state.transient_remaining <= 0:
            LOG.error(
                "giving up on %s after %d transient errors (status=%s)",
                signed.url,
                state.transient_failures,
                status,
            )
        elif response.is_success:
            LOG.info(
                "%s downloading %s [%s] status=%s attempts=%d "
                "(range retries=%d, transient retries=%d)",
                download.user,
                download.title,
                download.key,
                status,
                state.attempts,
                state.range_failures,
                state.transient_failures,
            )
        else:
            LOG.warning(
                "download of %s [%s] for %s failed status=%s attempts=%d",
                download.title,
                download.key,
                download.user,
                status,
                state.attempts,
            )

        if self._notifier is None:
            return
        if response.is_success:
            await self._notifier.send(success_message(download))
        else:
            await self._notifier.send(error_message(download, status))
