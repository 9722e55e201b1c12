"""Errors — exception taxonomy for the notifier."""

from __future__ import annotations

from multi_notifier.errors.notifier_errors import (
    ConfigurationError,
    DecodeError,
    NotifierError,
    StreamConnectError,
    StreamError,
)

__all__ = [
    "ConfigurationError",
    "DecodeError",
    "NotifierError",
    "StreamConnectError",
    "StreamError",
]
