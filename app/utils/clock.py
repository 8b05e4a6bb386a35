"""Time helpers - all persisted timestamps are naive UTC"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC, the format stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed to be UTC already"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
