"""Stream session — lifecycle of one long-lived notification stream.

A ``StreamSession`` owns a single connection and three asyncio tasks:

- the read loop, decoding frames in arrival order and awaiting the event
  handler for each one
- the heartbeat loop, writing a timestamp frame every interval
- the supervisor, which waits for whichever comes first of read-loop exit,
  heartbeat exit or an interrupt, then shuts the session down

States::

    idle -> connecting -> connected -> closing -> closed
                 \\             \\-> closing -> failed
                  \\-> failed

Errors never escape a background task: they are recorded on the session
and re-raised to the owner from :meth:`StreamSession.wait_closed`.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import signal
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from websockets.exceptions import ConnectionClosedOK, WebSocketException

from multi_notifier.errors.notifier_errors import (
    ConfigurationError,
    NotifierError,
    StreamConnectError,
    StreamError,
)
from multi_notifier.notifier.events import Event
from multi_notifier.notifier.targets import mask_token, stream_url
from multi_notifier.stream.connection import CLOSE_NORMAL, open_stream

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from multi_notifier.metrics.collector import NotifierMetrics
    from multi_notifier.stream.connection import Connector, StreamConnection

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 1.0  # seconds
CLOSE_TIMEOUT = 1.0  # seconds


class SessionState(enum.StrEnum):
    """Lifecycle states of a stream session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


_ENDED = frozenset({SessionState.CLOSED, SessionState.FAILED})


class StreamSession:
    """One streaming connection and its background tasks.

    Usage::

        session = StreamSession("ws://gotify", "token", on_event=handler)
        await session.start()        # raises on config or dial error
        ...
        await session.stop()         # graceful close, idempotent
    """

    def __init__(
        self,
        server_address: str,
        token: str,
        on_event: Callable[[Event], Awaitable[object]],
        *,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        close_timeout: float = CLOSE_TIMEOUT,
        connector: Connector | None = None,
        handle_signals: bool = False,
        metrics: NotifierMetrics | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            server_address: Stream server base URL (``ws://`` or ``wss://``).
            token: Client token appended as the ``token`` query parameter.
            on_event: Coroutine awaited for every decoded event.
            heartbeat_interval: Seconds between heartbeat frames.
            close_timeout: Grace period for the peer to acknowledge a close.
            connector: Opens the connection; defaults to :func:`open_stream`.
            handle_signals: Install a SIGINT handler that calls :meth:`interrupt`.
            metrics: Optional metrics sink.
        """
        self._server_address = server_address
        self._token = token
        self._on_event = on_event
        self._heartbeat_interval = heartbeat_interval
        self._close_timeout = close_timeout
        self._connector = connector
        self._handle_signals = handle_signals
        self._metrics = metrics

        self._state = SessionState.IDLE
        self._error: NotifierError | None = None
        self._connection: StreamConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._closer: asyncio.Future[None] | None = None
        self._interrupt = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._signal_loop: asyncio.AbstractEventLoop | None = None

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def error(self) -> NotifierError | None:
        """The error that ended (or prevented) the session, if any."""
        return self._error

    @property
    def is_active(self) -> bool:
        """Whether the session is connecting, connected or closing."""
        return self._state not in _ENDED and self._state != SessionState.IDLE

    @property
    def url(self) -> str:
        """Stream URL for this session."""
        return stream_url(self._server_address, self._token)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect and spawn the background tasks.

        Raises:
            ConfigurationError: If the token or server address is empty.
            StreamError: If the connection cannot be opened.
            RuntimeError: If the session was already started.
        """
        if self._state != SessionState.IDLE:
            msg = f"session cannot be started from state {self._state}"
            raise RuntimeError(msg)

        if not self._server_address:
            self._fail(ConfigurationError("please enter the correct server address"))
        if not self._token:
            self._fail(ConfigurationError("please add the client token first"))

        url = self.url
        self._loop = asyncio.get_running_loop()
        self._set_state(SessionState.CONNECTING)
        try:
            if self._connector is not None:
                self._connection = await self._connector(url)
            else:
                self._connection = await open_stream(url, close_timeout=self._close_timeout)
        except NotifierError as exc:
            self._fail(exc)
        except Exception as exc:
            self._fail(StreamConnectError(f"cannot open stream {mask_token(url)}: {exc}"))

        self._set_state(SessionState.CONNECTED)
        logger.info("Connected to %s", mask_token(url))

        self._reader = asyncio.create_task(self._read_loop(), name="multinotify-read")
        self._heartbeat = asyncio.create_task(
            self._heartbeat_loop(), name="multinotify-heartbeat"
        )
        self._supervisor = asyncio.create_task(
            self._supervise(self._reader, self._heartbeat), name="multinotify-supervisor"
        )
        if self._handle_signals:
            self._install_signal_handler()

    def interrupt(self) -> None:
        """Request a graceful shutdown (close frame, then grace period).

        Safe to call from any thread.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            self._interrupt.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._interrupt.set()
        else:
            loop.call_soon_threadsafe(self._interrupt.set)

    async def stop(self) -> None:
        """Gracefully close the session.  A no-op if it is not running."""
        if self._supervisor is None or self._state in _ENDED:
            return
        self.interrupt()
        await asyncio.gather(asyncio.shield(self._supervisor), return_exceptions=True)

    async def wait_closed(self) -> None:
        """Wait until the session has ended.

        Raises:
            NotifierError: The error that terminated the session, if any.
        """
        if self._supervisor is not None:
            await asyncio.shield(self._supervisor)
        if self._error is not None:
            raise self._error

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        """Decode frames in order and hand each event to the handler."""
        connection = self._require_connection()
        while True:
            try:
                frame = await connection.recv()
            except ConnectionClosedOK:
                logger.info("Stream closed by peer")
                return
            except (OSError, WebSocketException) as exc:
                msg = f"stream read failed: {exc}"
                raise StreamError(msg) from exc

            event = Event.from_frame(frame)
            if self._metrics:
                self._metrics.frame_received()

            try:
                await self._on_event(event)
            except Exception:
                logger.exception("Event handler failed for event %r", event.title)

    async def _heartbeat_loop(self) -> None:
        """Write a timestamp frame every ``heartbeat_interval`` seconds."""
        connection = self._require_connection()
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await connection.send(str(datetime.now(UTC)))
            except ConnectionClosedOK:
                return
            except (OSError, WebSocketException) as exc:
                msg = f"heartbeat write failed: {exc}"
                raise StreamError(msg) from exc
            if self._metrics:
                self._metrics.heartbeat_sent()

    async def _supervise(
        self, reader: asyncio.Task[None], heartbeat: asyncio.Task[None]
    ) -> None:
        """Wait for the first of: read exit, heartbeat exit, interrupt."""
        interrupted = asyncio.create_task(self._interrupt.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, heartbeat, interrupted},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if reader in done:
                self._error = self._task_error(reader)
                self._set_state(SessionState.CLOSING)
            elif heartbeat in done:
                self._error = self._task_error(heartbeat)
                self._set_state(SessionState.CLOSING)
            else:
                logger.info("Interrupt received, closing stream")
                await self._close_gracefully(reader)
            if self._error is not None:
                logger.error("Stream session failed: %s", self._error)
        finally:
            interrupted.cancel()
            await self._release()
            self._set_state(SessionState.FAILED if self._error else SessionState.CLOSED)
            logger.info("Stream session %s", self._state)

    async def _close_gracefully(self, reader: asyncio.Task[None]) -> None:
        """Send a normal-closure frame and give the read loop time to end."""
        self._set_state(SessionState.CLOSING)
        connection = self._require_connection()
        self._closer = asyncio.ensure_future(connection.close(CLOSE_NORMAL))
        _, pending = await asyncio.wait({self._closer, reader}, timeout=self._close_timeout)
        if pending:
            logger.warning(
                "Peer did not acknowledge close within %.1fs, forcing closure",
                self._close_timeout,
            )
            self._closer.cancel()

    async def _release(self) -> None:
        """Stop both loops and close the connection."""
        loops = [task for task in (self._reader, self._heartbeat) if task is not None]
        for task in loops:
            task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)

        if self._connection is not None:
            if self._closer is None:
                self._closer = asyncio.ensure_future(self._connection.close(CLOSE_NORMAL))
            done, _ = await asyncio.wait({self._closer}, timeout=self._close_timeout)
            if not done:
                self._closer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                try:
                    await self._closer
                except (OSError, WebSocketException) as exc:
                    logger.warning("Error closing stream connection: %s", exc)
            self._connection = None

        self._remove_signal_handler()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        if self._metrics:
            self._metrics.set_session_state(state)

    def _fail(self, error: NotifierError) -> None:
        """Record *error*, enter ``failed`` and raise it."""
        self._error = error
        self._set_state(SessionState.FAILED)
        raise error

    def _require_connection(self) -> StreamConnection:
        if self._connection is None:
            msg = "stream session is not connected"
            raise StreamError(msg)
        return self._connection

    @staticmethod
    def _task_error(task: asyncio.Task[None]) -> NotifierError | None:
        """Map a finished loop task to the error it ended with."""
        if task.cancelled():
            return None
        exc = task.exception()
        if exc is None:
            return None
        if isinstance(exc, NotifierError):
            return exc
        logger.error("Stream task %s crashed", task.get_name(), exc_info=exc)
        return StreamError(f"{task.get_name()} crashed: {exc}")

    def _install_signal_handler(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.interrupt)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler not available, relying on interrupt()")
            return
        self._signal_loop = loop

    def _remove_signal_handler(self) -> None:
        if self._signal_loop is not None:
            self._signal_loop.remove_signal_handler(signal.SIGINT)
            self._signal_loop = None
