"""
ProjectHub Shared Utilities — common helpers used across the platform.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to aware UTC.

    Naive values are treated as UTC (SQLite drops tzinfo on the way back from
    a ``DateTime(timezone=True)`` column).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string in UTC, or None."""
    value = ensure_utc(value)
    return value.isoformat() if value else None
