"""
UTC time helpers.

Every timestamp the service writes is UTC and timezone-aware. Some backends
(SQLite) hand datetimes back naive, so reads go through ``ensure_utc`` before
being compared or serialized.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None


def seconds_since(dt: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    dt = ensure_utc(dt)
    if dt is None:
        return None
    now = now or utc_now()
    return max(0, int((now - dt).total_seconds()))
