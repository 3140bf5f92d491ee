"""
Database clock.

Every timestamp the queue writes or compares comes from ``db_time_now`` so
all rows share one convention: naive datetimes in UTC.
"""

from datetime import datetime, timezone


def db_time_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_db_time(value: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
