"""NotifierError — base exception class and the configuration/stream errors.

Dispatch failures are deliberately absent: they are captured per target in
``DeliveryResult`` and never raised.
"""

from __future__ import annotations


class NotifierError(Exception):
    """Base error for all multi-notifier operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    def __init__(self, message: str, *, code: str = "notifier-error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(NotifierError):
    """Missing or invalid configuration; fatal to ``enable``."""

    def __init__(self, message: str, *, code: str = "configuration-error") -> None:
        super().__init__(message, code=code)


class StreamError(NotifierError):
    """Connection-class failure that terminates a streaming session."""

    def __init__(self, message: str, *, code: str = "stream-error") -> None:
        super().__init__(message, code=code)


class StreamConnectError(StreamError):
    """The stream (or its pre-flight probe) could not be opened."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="stream-connect-error")


class DecodeError(StreamError):
    """An inbound frame could not be decoded into an event."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="decode-error")
