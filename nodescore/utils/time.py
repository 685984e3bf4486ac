"""
UTC time helpers

All timestamps in the ledger and on opportunities are timezone-aware UTC.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time, aware UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC

    Naive values are taken to already be UTC (as collectors send them).

    Example:
        >>> as_utc(datetime(2025, 1, 3, 12, 0))
        datetime.datetime(2025, 1, 3, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
