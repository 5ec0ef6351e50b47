"""Wall-clock source injected into every durability component.

Timestamps are naive UTC datetimes throughout (same convention as the
SQLModel tables). Tests pass their own callable to pin time.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.utcnow()


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
