"""Resolved webhook targets and the per-session configuration.

Defaults are filled once, when configuration is resolved, so dispatch only
ever reads a fully-populated ``Target``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from multi_notifier.errors.notifier_errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

DEFAULT_METHOD = "POST"
DEFAULT_BODY = '{"msg":"$title\n$message"}'
DEFAULT_HEADERS: Mapping[str, str] = MappingProxyType({"Content-Type": "application/json"})

STREAM_PATH = "/stream"


@dataclass(frozen=True)
class Target:
    """One webhook destination with every default already applied."""

    url: str
    method: str = DEFAULT_METHOD
    body: str = DEFAULT_BODY
    headers: Mapping[str, str] = field(default_factory=lambda: DEFAULT_HEADERS)

    @classmethod
    def resolve(
        cls,
        url: str,
        method: str = "",
        body: str = "",
        headers: Mapping[str, str] | None = None,
    ) -> Target:
        """Build a ``Target``, substituting defaults for empty fields."""
        if not url:
            msg = "webhook target is missing its url"
            raise ConfigurationError(msg)
        return cls(
            url=url,
            method=method or DEFAULT_METHOD,
            body=body or DEFAULT_BODY,
            headers=MappingProxyType(dict(headers)) if headers else DEFAULT_HEADERS,
        )


def stream_url(server_address: str, token: str) -> str:
    """Return the stream endpoint URL for *server_address* and *token*."""
    return f"{server_address.rstrip('/')}{STREAM_PATH}?token={quote(token, safe='')}"


def mask_token(url: str) -> str:
    """Hide the token query value of a stream URL for logging."""
    head, sep, _ = url.partition("?token=")
    return f"{head}{sep}***" if sep else url


@dataclass(frozen=True)
class Configuration:
    """Immutable settings for one enabled session.

    Built once at enable time and shared read-only by the session and the
    dispatcher.
    """

    token: str
    server_address: str
    targets: tuple[Target, ...] = ()
    heartbeat_interval: float = 1.0
    close_timeout: float = 1.0
    request_timeout: float | None = None
    concurrent_dispatch: bool = False
    separate_preflight: bool = False

    @classmethod
    def build(
        cls,
        token: str,
        server_address: str,
        targets: Iterable[Target] = (),
        **kwargs: Any,
    ) -> Configuration:
        """Validate the connection fields and freeze the target list."""
        if not server_address:
            msg = "please enter the correct server address"
            raise ConfigurationError(msg)
        if not token:
            msg = "please add the client token first"
            raise ConfigurationError(msg)
        return cls(token=token, server_address=server_address, targets=tuple(targets), **kwargs)

    @property
    def stream_url(self) -> str:
        """The stream endpoint built from the address and token."""
        return stream_url(self.server_address, self.token)
