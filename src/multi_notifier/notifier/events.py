"""Event type for the notification stream.

One ``Event`` is decoded from each inbound text frame.  Frames carry a JSON
object; only ``title`` and ``message`` are used and any other field (``id``,
``appid``, ``priority``, ``date``, ``extras``) is ignored.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any

from multi_notifier.errors.notifier_errors import DecodeError


@dataclass(frozen=True)
class Event:
    """A single notification received over the stream."""

    title: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        return asdict(self)

    @classmethod
    def from_frame(cls, frame: str | bytes) -> Event:
        """Decode one inbound frame.

        Raises:
            DecodeError: If the frame is not UTF-8 JSON, is not an object,
                or carries a non-string ``title``/``message``.
        """
        try:
            data = json.loads(frame)
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeError(f"frame is not valid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise DecodeError(f"frame must be a JSON object, got {type(data).__name__}")

        fields: dict[str, str] = {}
        for name in ("title", "message"):
            value = data.get(name)
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise DecodeError(f"field {name!r} must be a string, got {type(value).__name__}")
            fields[name] = value
        return cls(**fields)
