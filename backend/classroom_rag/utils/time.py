"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Return current timestamp in milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def to_ms(value: datetime) -> int:
    """Convert an aware datetime to unix milliseconds."""
    return int(value.timestamp() * 1000)


def from_ms(value: int) -> datetime:
    """Convert unix milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def first_instant_of_next_month(value: datetime) -> datetime:
    """Return 00:00:00 UTC on the first day of the month following ``value``."""
    value = value.astimezone(timezone.utc)
    if value.month == 12:
        return datetime(value.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(value.year, value.month + 1, 1, tzinfo=timezone.utc)
