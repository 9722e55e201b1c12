"""Webhook delivery — fan one event out to every configured target.

Each target gets exactly one attempt.  Failures are recorded in the
target's ``DeliveryResult`` and logged; they never stop the remaining
targets and never propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from multi_notifier.notifier.template import render, render_headers

if TYPE_CHECKING:
    from collections.abc import Sequence

    from multi_notifier.metrics.collector import NotifierMetrics
    from multi_notifier.notifier.events import Event
    from multi_notifier.notifier.targets import Target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one dispatch attempt."""

    index: int
    url: str
    method: str
    status_code: int | None = None
    error: str | None = None
    elapsed: float = 0.0

    @property
    def delivered(self) -> bool:
        """Whether the target answered (any status code)."""
        return self.error is None and self.status_code is not None


class WebhookDispatcher:
    """Sends rendered webhook requests over a shared ``httpx.AsyncClient``.

    Usage::

        async with WebhookDispatcher() as dispatcher:
            results = await dispatcher.dispatch(event, config.targets)
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        concurrent: bool = False,
        metrics: NotifierMetrics | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            timeout: Per-request timeout in seconds; ``None`` waits forever.
            concurrent: Send to all targets at once instead of in order.
            metrics: Optional metrics sink.
            client: Pre-built HTTP client (tests inject a mock transport).
        """
        self._timeout = timeout
        self._concurrent = concurrent
        self._metrics = metrics
        self._client = client
        self._owns_client = client is None

    @property
    def is_started(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    async def start(self) -> None:
        """Create the underlying HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> WebhookDispatcher:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def dispatch(self, event: Event, targets: Sequence[Target]) -> list[DeliveryResult]:
        """Attempt delivery of *event* to every target.

        Returns one result per target, in target order.
        """
        if self._client is None:
            await self.start()

        if self._concurrent:
            # gather keeps argument order, so each attempt fills its own slot
            results = await asyncio.gather(
                *(self._deliver(i, target, event) for i, target in enumerate(targets))
            )
            return list(results)

        return [await self._deliver(i, target, event) for i, target in enumerate(targets)]

    async def _deliver(self, index: int, target: Target, event: Event) -> DeliveryResult:
        """Render and send one request; never raises."""
        start = time.monotonic()
        status_code: int | None = None
        error: str | None = None

        try:
            status_code = await self._send(target, event)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.warning("Webhook %s %s failed: %s", target.method, target.url, error)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.exception("Webhook %s %s raised unexpectedly", target.method, target.url)

        result = DeliveryResult(
            index=index,
            url=target.url,
            method=target.method,
            status_code=status_code,
            error=error,
            elapsed=time.monotonic() - start,
        )
        if self._metrics:
            self._metrics.delivery(delivered=result.delivered)
        return result

    async def _send(self, target: Target, event: Event) -> int:
        client = self._ensure_started()
        body = render(target.body, event)
        logger.debug("Webhook body for %s: %s", target.url, body)

        if self._metrics:
            with self._metrics.track_delivery():
                response = await self._request(client, target, body, event)
        else:
            response = await self._request(client, target, body, event)

        if response.is_success:
            logger.info("Webhook %s %s returned %d", target.method, target.url, response.status_code)
        else:
            logger.warning(
                "Webhook %s %s returned %d: %s",
                target.method,
                target.url,
                response.status_code,
                response.text[:200],
            )
        return response.status_code

    @staticmethod
    async def _request(
        client: httpx.AsyncClient, target: Target, body: str, event: Event
    ) -> httpx.Response:
        return await client.request(
            target.method,
            target.url,
            content=body.encode("utf-8"),
            headers=render_headers(dict(target.headers), event),
        )

    def _ensure_started(self) -> httpx.AsyncClient:
        """Return the HTTP client, raising if not started."""
        if self._client is None:
            msg = "Webhook dispatcher not started. Call start() first."
            raise RuntimeError(msg)
        return self._client
