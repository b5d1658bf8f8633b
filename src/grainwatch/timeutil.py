"""UTC helpers.

SQLite drops tzinfo on the way back out, so every timestamp inside
Grainwatch is a naive datetime in UTC.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def to_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC. Naive input is assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
