"""Stream — WebSocket session lifecycle.

Provides ``StreamSession`` (connect, read loop, heartbeat, graceful close)
and the connection helpers it is built on.
"""

from __future__ import annotations

from multi_notifier.stream.connection import open_stream, probe
from multi_notifier.stream.session import SessionState, StreamSession

__all__ = ["SessionState", "StreamSession", "open_stream", "probe"]
