"""Plugin facade — the host-facing lifecycle of the notifier.

The host (or the bundled CLI runner) drives a ``MultiNotifierPlugin``
through ``default_config`` → ``validate_and_set_config`` → ``enable`` →
``disable``.  Configuration changes take effect on the next enable; there is
no hot reload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from multi_notifier import __version__
from multi_notifier.config.settings import DEFAULT_SERVER_ADDRESS, NotifierConfig, load_config
from multi_notifier.notifier.dispatcher import WebhookDispatcher
from multi_notifier.notifier.targets import mask_token
from multi_notifier.stream.connection import open_stream, probe
from multi_notifier.stream.session import StreamSession

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

    from multi_notifier.metrics.collector import NotifierMetrics
    from multi_notifier.notifier.dispatcher import DeliveryResult
    from multi_notifier.notifier.events import Event
    from multi_notifier.notifier.targets import Configuration
    from multi_notifier.stream.connection import Connector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginInfo:
    """Static plugin metadata shown by the host."""

    name: str
    module_path: str
    author: str
    version: str
    description: str


PLUGIN_INFO = PluginInfo(
    name="multi-notifier",
    module_path="github.com/wuxs/multi-notify",
    author="wuxs",
    version=__version__,
    description="forward message to more notify server",
)

DISPLAY_TEXT = """\
How to configure:

1. Create a new client on the notification server and copy its token into
   `token` (`client_token` is accepted too).
2. Set `server_address` to the server's WebSocket address, ws://localhost by
   default.
3. List the webhooks that should receive notifications under `targets`.
   `$title` and `$message` in a body are replaced by the notification's
   fields. Empty fields default to method POST, body
   {"msg":"$title\\n$message"} and header Content-Type: application/json.

Example:

targets:
  - url: http://192.168.1.2:10201/api/sendTextMsg
    method: POST
    body: "{\\"wxid\\":\\"xxxxxxxx\\",\\"msg\\":\\"$title\\n$message\\"}"
  - url: "https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=xxxxxx"
    body: "{\\"msgtype\\":\\"text\\",\\"text\\":{\\"content\\":\\"$title\\n$message\\"}}"

Note: disable and re-enable the plugin after changing the configuration.
"""


class MultiNotifierPlugin:
    """Relays stream notifications to the configured webhooks.

    Usage::

        plugin = MultiNotifierPlugin()
        plugin.validate_and_set_config({"token": "...", "targets": [...]})
        await plugin.enable()
        ...
        await plugin.disable()
    """

    info = PLUGIN_INFO

    def __init__(
        self,
        *,
        handle_signals: bool = False,
        metrics: NotifierMetrics | None = None,
        connector: Connector | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = self.default_config()
        self._handle_signals = handle_signals
        self._metrics = metrics
        self._connector = connector
        self._http_client = http_client
        self._session: StreamSession | None = None
        self._dispatcher: WebhookDispatcher | None = None

    @property
    def config(self) -> NotifierConfig:
        """The currently accepted configuration."""
        return self._config

    @property
    def session(self) -> StreamSession | None:
        """The active (or most recently ended) session."""
        return self._session

    @property
    def is_enabled(self) -> bool:
        """Whether a session is currently running."""
        return self._session is not None and self._session.is_active

    # ------------------------------------------------------------------
    # Host lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def default_config() -> NotifierConfig:
        """Return the configuration offered to the operator initially."""
        return NotifierConfig(token="", server_address=DEFAULT_SERVER_ADDRESS, targets=[])

    def validate_and_set_config(self, config: NotifierConfig | dict[str, Any]) -> None:
        """Validate and store *config* for the next ``enable``.

        Raises:
            ConfigurationError: If *config* does not match the schema.
        """
        self._config = load_config(config)
        if self.is_enabled:
            logger.info("Configuration updated; re-enable the plugin to apply it")

    async def enable(self) -> None:
        """Start relaying.

        Returns once the stream is connected.

        Raises:
            ConfigurationError: Missing token, server address or target url.
            StreamConnectError: The pre-flight check or the connection failed.
        """
        if self.is_enabled:
            logger.info("Plugin already enabled")
            return

        if self._dispatcher is not None:
            # previous session ended on its own; release its HTTP client
            await self._dispatcher.close()
            self._dispatcher = None

        config = self._config.resolve()
        if config.separate_preflight:
            await probe(config.stream_url, self._connector or open_stream)

        dispatcher = WebhookDispatcher(
            timeout=config.request_timeout,
            concurrent=config.concurrent_dispatch,
            metrics=self._metrics,
            client=self._http_client,
        )
        await dispatcher.start()

        session = StreamSession(
            config.server_address,
            config.token,
            on_event=self._relay(dispatcher, config),
            heartbeat_interval=config.heartbeat_interval,
            close_timeout=config.close_timeout,
            connector=self._connector,
            handle_signals=self._handle_signals,
            metrics=self._metrics,
        )
        try:
            await session.start()
        except Exception:
            await dispatcher.close()
            raise

        self._session = session
        self._dispatcher = dispatcher
        logger.info(
            "Plugin enabled: relaying %s to %d webhook(s)",
            mask_token(config.stream_url),
            len(config.targets),
        )

    async def disable(self) -> None:
        """Stop relaying.  Safe to call when not enabled."""
        if self._session is not None:
            await self._session.stop()
        if self._dispatcher is not None:
            await self._dispatcher.close()
            self._dispatcher = None
            logger.info("Plugin disabled")

    async def wait(self) -> None:
        """Wait for the running session to end.

        Raises:
            NotifierError: The error that terminated the session, if any.
        """
        if self._session is not None:
            await self._session.wait_closed()

    def get_display(self, location: str | None = None) -> str:
        """Return the configuration help text shown by the host."""
        return DISPLAY_TEXT

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _relay(
        dispatcher: WebhookDispatcher, config: Configuration
    ) -> Callable[[Event], Awaitable[list[DeliveryResult]]]:
        async def _on_event(event: Event) -> list[DeliveryResult]:
            results = await dispatcher.dispatch(event, config.targets)
            failed = sum(1 for r in results if not r.delivered)
            if failed:
                logger.warning(
                    "Event %r: %d of %d webhook(s) failed", event.title, failed, len(results)
                )
            return results

        return _on_event
