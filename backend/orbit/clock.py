"""
clock.py - UTC time helpers shared by models and services.

All timestamps are stored as timezone-aware UTC. Some drivers (SQLite) hand
back naive datetimes for DateTime(timezone=True) columns; as_utc() re-attaches
UTC so comparisons against utcnow() never mix naive and aware values.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    """ISO-8601 string for a stored timestamp, always with a UTC offset."""
    value = as_utc(value)
    return value.isoformat() if value is not None else None
