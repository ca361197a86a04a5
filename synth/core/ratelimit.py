"""
Per-client token buckets for the HTTP layer.

Buckets live in process memory, one per (client, route category). Nothing is
limited unless RATE_LIMIT_ENABLED is set.
"""

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

Clock = Callable[[], float]


@dataclass
class RateLimitConfig:
    enabled: bool = False
    per_minute_default: int = 120
    burst_default: int = 30

    def scaled(self, factor: float) -> "RoutePolicy":
        return RoutePolicy(
            per_minute=max(1, int(self.per_minute_default * factor)),
            burst=max(1, int(self.burst_default * factor)),
        )


@dataclass(frozen=True)
class RoutePolicy:
    per_minute: int
    burst: int

    @property
    def refill_per_sec(self) -> float:
        return self.per_minute / 60.0


class TokenBucket:
    """Starts full; spends one token per request and refills continuously."""

    def __init__(self, capacity: int, refill_rate_per_sec: float, time_fn: Clock = time.monotonic):
        self.capacity = max(1, capacity)
        self.refill_rate = max(0.0, refill_rate_per_sec)
        self._clock = time_fn
        self._level = float(self.capacity)
        self._stamp = time_fn()

    @property
    def tokens(self) -> float:
        self._top_up()
        return self._level

    def _top_up(self) -> None:
        now = self._clock()
        if now > self._stamp:
            self._level = min(float(self.capacity), self._level + (now - self._stamp) * self.refill_rate)
            self._stamp = now

    def allow(self, cost: float = 1.0) -> bool:
        self._top_up()
        if self._level < cost:
            return False
        self._level -= cost
        return True

    def seconds_until_available(self, cost: float = 1.0) -> float:
        self._top_up()
        shortfall = cost - self._level
        if shortfall <= 0 or self.refill_rate <= 0:
            return 0.0
        return shortfall / self.refill_rate


class InMemoryRateLimiter:
    """
    Buckets keyed by client and category.

    A bucket that has refilled to capacity acts exactly like a new one, so
    every `sweep_every` hits those buckets are dropped.
    """

    def __init__(self, time_fn: Clock = time.monotonic, sweep_every: int = 1000):
        self._clock = time_fn
        self._buckets: Dict[str, TokenBucket] = {}
        self._sweep_every = max(1, sweep_every)
        self._hits = 0

    def __len__(self) -> int:
        return len(self._buckets)

    def _bucket(self, key: str, policy: RoutePolicy) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(policy.burst, policy.refill_per_sec, time_fn=self._clock)
            self._buckets[key] = bucket
        return bucket

    def sweep(self) -> int:
        """Drop full buckets; returns how many went."""
        idle = [key for key, bucket in self._buckets.items() if bucket.tokens >= bucket.capacity]
        for key in idle:
            del self._buckets[key]
        return len(idle)

    def hit(self, key: str, policy: RoutePolicy) -> Optional[int]:
        """Spend a token for `key`. Returns None when allowed, else whole seconds to wait."""
        self._hits += 1
        if self._hits % self._sweep_every == 0:
            self.sweep()
        bucket = self._bucket(key, policy)
        if bucket.allow():
            return None
        return max(1, math.ceil(round(bucket.seconds_until_available(), 6)))


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def build_rate_limit_config(settings_obj: Optional[Any] = None) -> RateLimitConfig:
    if settings_obj is None:
        from synth.core.config import settings as settings_obj

    return RateLimitConfig(
        enabled=bool(getattr(settings_obj, "RATE_LIMIT_ENABLED", False)),
        per_minute_default=_positive_int(getattr(settings_obj, "RATE_LIMIT_PER_MINUTE_DEFAULT", None), 120),
        burst_default=_positive_int(getattr(settings_obj, "RATE_LIMIT_BURST_DEFAULT", None), 30),
    )
