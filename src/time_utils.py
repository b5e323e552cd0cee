"""Time helpers for UTC storage and SLA arithmetic."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return the current aware UTC time."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to aware UTC, treating naive values as UTC.

    SQLite drops tzinfo on round-trip, so values read back from the store are
    naive even when written aware.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_optional_utc(value: datetime | None) -> datetime | None:
    """Normalize optional datetimes to UTC when provided."""
    if value is None:
        return None
    return to_utc(value)


def hours_between(start: datetime, end: datetime) -> float:
    """Return the signed number of hours from ``start`` to ``end``."""
    return (to_utc(end) - to_utc(start)).total_seconds() / 3600.0


def utc_date(value: datetime) -> date:
    """Return the UTC calendar date for a datetime."""
    return to_utc(value).date()
