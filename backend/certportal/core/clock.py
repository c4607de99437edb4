"""Time helpers shared by every component that checks an expiry."""
from __future__ import annotations

import datetime as dt
import math


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def ensure_aware(value: dt.datetime) -> dt.datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def is_expired(deadline: dt.datetime, now: dt.datetime | None = None, *, leeway: int = 0) -> bool:
    """Return True once ``now`` has reached ``deadline`` plus ``leeway`` seconds."""

    current = now or utcnow()
    return ensure_aware(current) >= ensure_aware(deadline) + dt.timedelta(seconds=leeway)


def seconds_until(deadline: dt.datetime, now: dt.datetime | None = None) -> int:
    """Whole seconds remaining until ``deadline``, rounded up and never negative."""

    current = now or utcnow()
    remaining = (ensure_aware(deadline) - ensure_aware(current)).total_seconds()
    return max(0, math.ceil(remaining))


def from_timestamp(value: int | float) -> dt.datetime:
    return dt.datetime.fromtimestamp(int(value), tz=dt.timezone.utc)


def to_timestamp(value: dt.datetime) -> int:
    return int(ensure_aware(value).timestamp())
