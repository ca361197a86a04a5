"""
synth/features/usage/service.py

Usage counting for countable entitlements.

Handles:
- Calendar month windows (UTC)
- Active workflow counts
- Executions started in the current month

Counts are read fresh through the store on every call, never cached.
"""

from datetime import datetime
from typing import Optional

from synth.core.clock import now_or_utc


def start_of_month(now: Optional[datetime] = None) -> datetime:
    """Day 1, 00:00:00 UTC of the month containing `now`."""
    current = now_or_utc(now)
    return current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_next_month(now: Optional[datetime] = None) -> datetime:
    """When the monthly counter resets."""
    start = start_of_month(now)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def count_active_workflows(store, user_id: str) -> int:
    return int(store.count_workflows(user_id, active_only=True))


def count_workflows(store, user_id: str) -> int:
    return int(store.count_workflows(user_id, active_only=False))


def count_executions_this_month(store, user_id: str, now: Optional[datetime] = None) -> int:
    """Executions created since the start of the current UTC month."""
    return int(store.count_executions(user_id, since=start_of_month(now)))
