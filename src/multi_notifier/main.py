"""Application entry point: run the notifier as a standalone process."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from prometheus_client import start_http_server

from multi_notifier.config.settings import NotifierConfig
from multi_notifier.errors.notifier_errors import NotifierError
from multi_notifier.metrics.collector import NotifierMetrics
from multi_notifier.plugin import MultiNotifierPlugin

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="multi-notifier",
        description="Forward stream notifications to multiple webhooks.",
    )
    parser.add_argument("-c", "--config", default="", help="YAML configuration file")
    return parser.parse_args(argv)


async def run(config: NotifierConfig) -> None:
    """Enable the plugin, wait for the session to end, then disable it.

    Raises:
        NotifierError: If enabling fails or the session ends with an error.
    """
    metrics = NotifierMetrics()
    if config.metrics.enabled:
        start_http_server(config.metrics.port, registry=metrics.registry)
        logger.info("Metrics exposed on port %d", config.metrics.port)

    plugin = MultiNotifierPlugin(handle_signals=True, metrics=metrics)
    plugin.validate_and_set_config(config)
    await plugin.enable()
    try:
        await plugin.wait()
    finally:
        await plugin.disable()


def main(argv: list[str] | None = None) -> int:
    """Start the notifier; returns the process exit code."""
    args = _parse_args(argv)
    try:
        config = NotifierConfig.from_yaml(args.config) if args.config else NotifierConfig()
    except ValueError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=config.log_level.value,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(run(config))
    except NotifierError as exc:
        logger.error("multi-notifier stopped: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
