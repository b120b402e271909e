"""
Datetime utilities.

Timestamps are stored as naive UTC values in ``DateTime`` columns, so every
helper here normalizes to that form.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Get current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime:
    """
    Normalize ``value`` to naive UTC, defaulting to the current time.

    Aware datetimes are converted to UTC before dropping the tzinfo.
    """
    if value is None:
        return utcnow()
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
