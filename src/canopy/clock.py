"""Timestamp helper.

All stored timestamps are naive UTC; SQLite drops tzinfo on the way in,
so comparing against aware datetimes would raise.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
