from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    ABSENT = "absent"


def as_utc(value: datetime) -> datetime:
    # Naive timestamps are treated as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def classify(fetched_at: Optional[datetime], ttl: timedelta, now: datetime) -> Freshness:
    """Classify a cached record's age against a TTL.

    Pure: the answer depends only on the three arguments. The TTL boundary is
    inclusive, so a record exactly ``ttl`` old is still fresh.
    """

    if fetched_at is None:
        return Freshness.ABSENT
    age = as_utc(now) - as_utc(fetched_at)
    if age <= ttl:
        return Freshness.FRESH
    return Freshness.STALE
