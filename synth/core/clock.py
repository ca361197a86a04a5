"""UTC helpers. Naive datetimes (SQLite reads, callers) are taken to be UTC."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def now_or_utc(now: Optional[datetime]) -> datetime:
    """`now` as aware UTC, or the wall clock when it is None."""
    return utc_now() if now is None else as_utc(now)
