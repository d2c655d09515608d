"""Shared datetime helpers.

All ages and spans are expressed in synthetic months of 30.5 days, independent
of calendar months.
"""

from __future__ import annotations

from datetime import datetime, timezone

SECONDS_PER_MONTH = 3600.0 * 24.0 * 30.5


def ensure_utc(dt: datetime) -> datetime:
    """Return a timezone-aware UTC datetime."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def age_in_months(date: datetime, now: datetime | None = None) -> float:
    """Months elapsed between ``date`` and ``now``.

    Timestamps slightly in the future (clock skew between us and the API)
    count as age zero.
    """
    now = ensure_utc(now) if now is not None else utc_now()
    age = (now - ensure_utc(date)).total_seconds() / SECONDS_PER_MONTH
    return max(age, 0.0)


def span_in_months(first: datetime, second: datetime) -> float:
    """Absolute distance between two timestamps, in months."""
    return abs((ensure_utc(second) - ensure_utc(first)).total_seconds()) / SECONDS_PER_MONTH
