"""In-memory rate limiting for login and other sensitive endpoints."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional


@dataclass
class _Bucket:
    hits: int
    resets_at: datetime


class RateLimiter:
    """Count attempts per key inside a fixed decay window.

    Expired buckets are swept from ``hit`` at most once per ``sweep_interval``
    seconds, so keys derived from client input do not accumulate.
    """

    def __init__(self, *, sweep_interval: int = 60) -> None:
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._sweep_interval = timedelta(seconds=sweep_interval)
        self._next_sweep: Optional[datetime] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def hit(self, key: str, *, decay_seconds: int = 60) -> int:
        now = self._now()
        with self._lock:
            self._sweep(now)
            bucket = self._buckets.get(key)
            if bucket is None or bucket.resets_at <= now:
                bucket = _Bucket(hits=0, resets_at=now + timedelta(seconds=decay_seconds))
                self._buckets[key] = bucket
            bucket.hits += 1
            return bucket.hits

    def attempts(self, key: str) -> int:
        now = self._now()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or bucket.resets_at <= now:
                return 0
            return bucket.hits

    def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        return self.attempts(key) >= max_attempts

    def available_in(self, key: str) -> int:
        """Seconds until ``key`` may be attempted again."""

        now = self._now()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or bucket.resets_at <= now:
                return 0
            return max(1, math.ceil((bucket.resets_at - now).total_seconds()))

    def clear(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def _sweep(self, now: datetime) -> None:
        # Caller holds the lock.
        if self._next_sweep is not None and now < self._next_sweep:
            return
        expired = [key for key, bucket in self._buckets.items() if bucket.resets_at <= now]
        for key in expired:
            del self._buckets[key]
        self._next_sweep = now + self._sweep_interval

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["RateLimiter"]
