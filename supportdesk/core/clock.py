"""Time source used by session resolution and escalation timestamps."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return datetime.now(timezone.utc)


__all__ = ["Clock", "utcnow"]
