"""
DateTime utilities for consistent timezone handling.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get the current UTC time with timezone awareness.

    Returns:
        datetime: Current UTC time with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to aware UTC.

    Naive values are assumed to already be UTC, which is how asyncpg returns
    ``timestamp without time zone`` columns.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def days_from(now: datetime, days: int) -> datetime:
    """Return ``now`` shifted by a whole number of days."""
    return now + timedelta(days=days)


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    """An expiry at or before ``now`` is expired; ``None`` never expires."""
    return expires_at is not None and ensure_utc(expires_at) <= now
