"""Tests for StreamSession — uses an in-memory fake connection."""

from __future__ import annotations

import asyncio
import json
import threading
from datetime import datetime
from typing import TYPE_CHECKING

import pytest
from prometheus_client import CollectorRegistry
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from multi_notifier.errors.notifier_errors import (
    ConfigurationError,
    DecodeError,
    StreamConnectError,
    StreamError,
)
from multi_notifier.metrics.collector import MetricsCollector, NotifierMetrics
from multi_notifier.notifier.events import Event
from multi_notifier.stream.session import SessionState, StreamSession

if TYPE_CHECKING:
    from conftest import FakeConnector


def _frame(title: str, message: str = "") -> str:
    return json.dumps({"title": title, "message": message})


class Recorder:
    """Event handler collecting everything it is given."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def __call__(self, event: Event) -> None:
        self.events.append(event)


def _session(connector: FakeConnector, handler=None, **kwargs) -> StreamSession:
    kwargs.setdefault("heartbeat_interval", 10.0)
    kwargs.setdefault("close_timeout", 0.2)
    return StreamSession(
        "ws://gotify.local",
        "secret",
        on_event=handler or Recorder(),
        connector=connector,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------


class TestStart:
    def test_initial_state(self, connector: FakeConnector) -> None:
        s = _session(connector)
        assert s.state == SessionState.IDLE
        assert s.error is None
        assert s.is_active is False
        assert s.url == "ws://gotify.local/stream?token=secret"

    async def test_empty_token(self, connector: FakeConnector) -> None:
        s = StreamSession("ws://h", "", on_event=Recorder(), connector=connector)
        with pytest.raises(ConfigurationError, match="token"):
            await s.start()
        assert s.state == SessionState.FAILED
        assert connector.urls == []

    async def test_empty_server_address(self, connector: FakeConnector) -> None:
        s = StreamSession("", "tok", on_event=Recorder(), connector=connector)
        with pytest.raises(ConfigurationError, match="server address"):
            await s.start()
        assert s.state == SessionState.FAILED
        assert connector.urls == []

    async def test_connect_failure(self, make_connector) -> None:
        connector = make_connector(error=StreamConnectError("refused"))
        s = _session(connector)
        with pytest.raises(StreamConnectError):
            await s.start()
        assert s.state == SessionState.FAILED
        assert isinstance(s.error, StreamConnectError)
        assert s._reader is None
        assert s._heartbeat is None

    async def test_os_error_wrapped(self, make_connector) -> None:
        s = _session(make_connector(error=ConnectionRefusedError("nope")))
        with pytest.raises(StreamConnectError, match="cannot open stream"):
            await s.start()
        assert s.state == SessionState.FAILED

    async def test_unexpected_connector_error_wrapped(self, make_connector) -> None:
        s = _session(make_connector(error=ValueError("Port out of range 0-65535")))
        with pytest.raises(StreamConnectError, match="Port out of range"):
            await s.start()
        assert s.state == SessionState.FAILED
        assert isinstance(s.error, StreamConnectError)

    async def test_malformed_address_fails_session(self) -> None:
        s = StreamSession("ws://localhost:99999", "t", on_event=Recorder())
        with pytest.raises(StreamConnectError):
            await s.start()
        assert s.state == SessionState.FAILED

    async def test_connected(self, connector: FakeConnector) -> None:
        s = _session(connector)
        await s.start()
        assert s.state == SessionState.CONNECTED
        assert s.is_active
        assert connector.urls == ["ws://gotify.local/stream?token=secret"]
        await s.stop()

    async def test_start_twice(self, connector: FakeConnector) -> None:
        s = _session(connector)
        await s.start()
        with pytest.raises(RuntimeError):
            await s.start()
        await s.stop()


# ---------------------------------------------------------------------------
# Read loop
# ---------------------------------------------------------------------------


class TestReadLoop:
    async def test_events_in_arrival_order(self, connector: FakeConnector, wait_until) -> None:
        rec = Recorder()
        s = _session(connector, rec)
        await s.start()
        for i in range(5):
            connector.last.feed(_frame(f"t{i}", f"m{i}"))
        await wait_until(lambda: len(rec.events) == 5)
        assert [e.title for e in rec.events] == ["t0", "t1", "t2", "t3", "t4"]
        await s.stop()

    async def test_handler_error_does_not_stop_loop(
        self, connector: FakeConnector, wait_until
    ) -> None:
        seen: list[str] = []

        async def handler(event: Event) -> None:
            seen.append(event.title)
            if event.title == "bad":
                msg = "webhook exploded"
                raise RuntimeError(msg)

        s = _session(connector, handler)
        await s.start()
        connector.last.feed(_frame("bad"))
        connector.last.feed(_frame("good"))
        await wait_until(lambda: seen == ["bad", "good"])
        assert s.state == SessionState.CONNECTED
        await s.stop()

    async def test_decode_error_terminates_without_dispatch(
        self, connector: FakeConnector
    ) -> None:
        rec = Recorder()
        s = _session(connector, rec)
        await s.start()
        connector.last.feed("{not json")
        connector.last.feed(_frame("never"))

        with pytest.raises(DecodeError):
            await s.wait_closed()
        assert rec.events == []
        assert s.state == SessionState.FAILED
        assert connector.last.close_codes == [1000]

    async def test_read_error_fails_session(self, connector: FakeConnector) -> None:
        s = _session(connector)
        await s.start()
        connector.last.feed(ConnectionClosedError(None, None))
        with pytest.raises(StreamError, match="read failed"):
            await s.wait_closed()
        assert s.state == SessionState.FAILED

    async def test_peer_normal_close(self, connector: FakeConnector) -> None:
        s = _session(connector)
        await s.start()
        connector.last.feed(ConnectionClosedOK(None, None))
        await s.wait_closed()
        assert s.state == SessionState.CLOSED
        assert s.error is None


# ---------------------------------------------------------------------------
# Heartbeat
# ---------------------------------------------------------------------------


class TestHeartbeat:
    async def test_sends_timestamps(self, connector: FakeConnector, wait_until) -> None:
        s = _session(connector, heartbeat_interval=0.02)
        await s.start()
        await wait_until(lambda: len(connector.last.sent) >= 3)
        await s.stop()
        for frame in connector.last.sent:
            assert isinstance(datetime.fromisoformat(frame), datetime)

    async def test_send_failure_fails_session(self, make_connector) -> None:
        connector = make_connector(send_error=ConnectionClosedError(None, None))
        s = _session(connector, heartbeat_interval=0.02)
        await s.start()
        with pytest.raises(StreamError, match="heartbeat"):
            await s.wait_closed()
        assert s.state == SessionState.FAILED


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    async def test_interrupt_sends_close_frame(self, connector: FakeConnector) -> None:
        s = _session(connector)
        await s.start()
        s.interrupt()
        await s.wait_closed()
        assert s.state == SessionState.CLOSED
        assert connector.last.close_codes == [1000]

    async def test_unacknowledged_close_bounded_by_grace(self, make_connector) -> None:
        connector = make_connector(ack_close=False)
        s = _session(connector, close_timeout=0.1)
        await s.start()
        loop = asyncio.get_running_loop()
        started = loop.time()
        s.interrupt()
        await s.wait_closed()
        elapsed = loop.time() - started
        assert s.state == SessionState.CLOSED
        assert 0.09 <= elapsed < 1.0
        assert connector.last.close_codes == [1000]

    async def test_interrupt_from_another_thread(self, connector: FakeConnector) -> None:
        s = _session(connector)
        await s.start()
        timer = threading.Timer(0.05, s.interrupt)
        timer.start()
        # nothing else is scheduled, so only a thread-safe wakeup ends the wait
        await asyncio.wait_for(s.wait_closed(), timeout=1.0)
        timer.join()
        assert s.state == SessionState.CLOSED
        assert connector.last.close_codes == [1000]

    async def test_stop_idempotent(self, connector: FakeConnector) -> None:
        s = _session(connector)
        await s.stop()  # idle: no-op
        assert s.state == SessionState.IDLE
        await s.start()
        await s.stop()
        await s.stop()
        assert s.state == SessionState.CLOSED
        assert len(connector.last.close_codes) == 1

    async def test_tasks_finished_after_stop(self, connector: FakeConnector) -> None:
        s = _session(connector, heartbeat_interval=0.01)
        await s.start()
        await s.stop()
        assert s._reader is not None and s._reader.done()
        assert s._heartbeat is not None and s._heartbeat.done()


class TestSessionMetrics:
    async def test_frames_and_state(self, connector: FakeConnector, wait_until) -> None:
        reg = CollectorRegistry()
        metrics = NotifierMetrics(MetricsCollector(registry=reg))
        rec = Recorder()
        s = _session(connector, rec, metrics=metrics)
        await s.start()
        assert reg.get_sample_value("multinotify_session_state", {"state": "connected"}) == 1.0
        connector.last.feed(_frame("a"))
        await wait_until(lambda: len(rec.events) == 1)
        await s.stop()
        assert reg.get_sample_value("multinotify_frames_received_total") == 1.0
        assert reg.get_sample_value("multinotify_session_state", {"state": "closed"}) == 1.0
        assert reg.get_sample_value("multinotify_session_state", {"state": "connected"}) == 0.0
