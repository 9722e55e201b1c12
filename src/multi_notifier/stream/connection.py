"""Stream connections — open the WebSocket and run the pre-flight probe.

``StreamConnection`` is the small surface the session needs from a
``websockets`` client connection; tests substitute an in-memory fake through
the ``Connector`` callable.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from multi_notifier.errors.notifier_errors import StreamConnectError
from multi_notifier.notifier.targets import mask_token

logger = logging.getLogger(__name__)

CLOSE_NORMAL = 1000


class StreamConnection(Protocol):
    """Duplex text-frame connection."""

    async def recv(self) -> str | bytes: ...

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None: ...


Connector = Callable[[str], Awaitable[StreamConnection]]


async def open_stream(url: str, *, close_timeout: float = 1.0) -> StreamConnection:
    """Open a WebSocket connection to *url*.

    Raises:
        StreamConnectError: On a malformed URL or a DNS, TCP, TLS or handshake
            failure.
    """
    try:
        return await connect(url, close_timeout=close_timeout)
    except (OSError, TimeoutError, ValueError, WebSocketException) as exc:
        logger.warning("Dial error for %s: %s", mask_token(url), exc)
        msg = f"cannot open stream {mask_token(url)}: {exc}"
        raise StreamConnectError(msg) from exc


async def probe(url: str, connector: Connector = open_stream) -> None:
    """Open and immediately close a throwaway connection to *url*.

    Raises:
        StreamConnectError: If the connection cannot be opened.
    """
    connection = await connector(url)
    try:
        await connection.close(CLOSE_NORMAL)
    except (OSError, WebSocketException) as exc:
        logger.debug("Ignoring close error on probe connection: %s", exc)
    logger.info("Pre-flight check succeeded for %s", mask_token(url))
