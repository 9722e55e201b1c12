"""Shared test fixtures for the multi-notifier test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import pytest
from websockets.exceptions import ConnectionClosedOK

from multi_notifier.notifier.events import Event
from multi_notifier.notifier.targets import Target

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class FakeConnection:
    """In-memory stand-in for a ``websockets`` client connection.

    Frames pushed with :meth:`feed` are returned by ``recv``; an exception
    instance pushed the same way is raised instead.  ``close`` records the
    close code and, when ``ack_close`` is set, answers like a well-behaved
    peer by ending the stream.
    """

    def __init__(self, *, ack_close: bool = True, send_error: Exception | None = None) -> None:
        self.incoming: asyncio.Queue[str | bytes | Exception] = asyncio.Queue()
        self.sent: list[str] = []
        self.close_codes: list[int] = []
        self.ack_close = ack_close
        self.send_error = send_error

    def feed(self, frame: str | bytes | Exception) -> None:
        self.incoming.put_nowait(frame)

    async def recv(self) -> str | bytes:
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, message: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_codes.append(code)
        if self.ack_close:
            self.feed(ConnectionClosedOK(None, None))


class FakeConnector:
    """Connector returning fresh ``FakeConnection`` objects (or raising)."""

    def __init__(self, error: Exception | None = None, **conn_kwargs) -> None:
        self.error = error
        self.conn_kwargs = conn_kwargs
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]

    async def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        conn = FakeConnection(**self.conn_kwargs)
        self.connections.append(conn)
        return conn


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds or *timeout* elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "condition not met in time"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


def _mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` backed by a MockTransport."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def event() -> Event:
    """The disk-usage notification used across the suite."""
    return Event(title="Disk", message="90% full")


@pytest.fixture
def connector() -> FakeConnector:
    """A connector handing out in-memory connections."""
    return FakeConnector()


@pytest.fixture
def make_connector() -> Callable[..., FakeConnector]:
    """Factory for connectors that fail or hand out tuned connections."""
    return FakeConnector


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate on the running loop until it holds."""
    return _wait_until


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for ``httpx.AsyncClient`` objects served by a handler."""
    return _mock_client


@pytest.fixture
def targets() -> tuple[Target, ...]:
    """Three webhook targets with mixed explicit and default settings."""
    return (
        Target.resolve("http://h/a"),
        Target.resolve("http://h/b", method="PUT", body="$title"),
        Target.resolve("http://h/c", headers={"X-Source": "$title"}),
    )
