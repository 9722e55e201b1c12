"""multi-notifier — relay stream notifications to multiple webhooks."""

from __future__ import annotations

__version__ = "0.1.0"
