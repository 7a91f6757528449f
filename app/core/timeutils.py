"""UTC helpers. Timestamps are stored as naive UTC datetimes."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> datetime:
    """Normalize an optional (possibly tz-aware) datetime to naive UTC; None means now."""
    if value is None:
        return utc_now()
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
