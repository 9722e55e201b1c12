"""Metrics collector — Prometheus counters, gauges, histograms.

- ``multinotify_frames_received_total``
- ``multinotify_heartbeats_sent_total``
- ``multinotify_deliveries_total`` (label ``outcome``: delivered / failed)
- ``multinotify_delivery_duration_seconds``
- ``multinotify_session_state`` (label ``state``, 1 for the current state)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator

_PREFIX = "multinotify"

_SESSION_STATES = ("idle", "connecting", "connected", "closing", "closed", "failed")


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`NotifierMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class NotifierMetrics:
    """Stream and delivery metrics for one plugin instance."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._frames = self._collector.counter(
            f"{_PREFIX}_frames_received",
            "Inbound stream frames decoded into events",
        )
        self._heartbeats = self._collector.counter(
            f"{_PREFIX}_heartbeats_sent",
            "Heartbeat frames written to the stream",
        )
        self._deliveries = self._collector.counter(
            f"{_PREFIX}_deliveries",
            "Webhook delivery attempts by outcome",
            ("outcome",),
        )
        self._delivery_duration = self._collector.histogram(
            f"{_PREFIX}_delivery_duration_seconds",
            "Duration of webhook delivery attempts",
        )
        self._session_state = self._collector.gauge(
            f"{_PREFIX}_session_state",
            "Current stream session state (1 = active state)",
            ("state",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    def frame_received(self) -> None:
        self._frames.inc()

    def heartbeat_sent(self) -> None:
        self._heartbeats.inc()

    def delivery(self, *, delivered: bool) -> None:
        """Count one webhook attempt."""
        self._deliveries.labels(outcome="delivered" if delivered else "failed").inc()

    def set_session_state(self, state: str) -> None:
        """Mark *state* as the current session state."""
        for name in _SESSION_STATES:
            self._session_state.labels(state=name).set(1 if name == state else 0)

    @contextmanager
    def track_delivery(self) -> Iterator[None]:
        """Track the duration of one webhook attempt."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._delivery_duration.observe(time.monotonic() - start)
