"""Template rendering for webhook bodies.

Two placeholders are supported, ``$title`` and ``$message``.  Substitution
is a single left-to-right pass: text inserted for one placeholder is never
scanned again, so a title containing ``$message`` stays literal.  Nothing is
escaped; a JSON template must cope with quotes in the substituted values.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from multi_notifier.notifier.events import Event

_PLACEHOLDER = re.compile(r"\$(title|message)")


def render(template: str, event: Event) -> str:
    """Return *template* with every placeholder replaced by *event*'s fields."""
    values = {"title": event.title, "message": event.message}
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


def render_headers(headers: dict[str, str], event: Event) -> dict[str, str]:
    """Render each header value with the same rule as the body."""
    return {name: render(value, event) for name, value in headers.items()}
