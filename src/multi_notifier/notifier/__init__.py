"""Notifier — events, targets, template rendering and webhook dispatch.

Provides:
- ``Event`` — one decoded stream notification
- ``Target`` / ``Configuration`` — resolved, immutable delivery settings
- ``render`` — ``$title``/``$message`` substitution
- ``WebhookDispatcher`` — per-target delivery with failure isolation
"""

from __future__ import annotations

from multi_notifier.notifier.dispatcher import DeliveryResult, WebhookDispatcher
from multi_notifier.notifier.events import Event
from multi_notifier.notifier.targets import Configuration, Target
from multi_notifier.notifier.template import render

__all__ = [
    "Configuration",
    "DeliveryResult",
    "Event",
    "Target",
    "WebhookDispatcher",
    "render",
]
