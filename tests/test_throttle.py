"""Tests for the in-memory rate limiter."""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from app.throttle import RateLimiter


class RateLimiterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.limiter = RateLimiter()
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        patcher = mock.patch.object(self.limiter, "_now", side_effect=lambda: self.now)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_hits_accumulate_until_limit(self) -> None:
        for expected in range(1, 6):
            self.assertEqual(self.limiter.hit("login|a"), expected)
        self.assertTrue(self.limiter.too_many_attempts("login|a", 5))
        self.assertFalse(self.limiter.too_many_attempts("login|b", 5))

    def test_window_expires(self) -> None:
        self.limiter.hit("key", decay_seconds=60)
        self.assertEqual(self.limiter.available_in("key"), 60)

        self.now += timedelta(seconds=45)
        self.assertEqual(self.limiter.available_in("key"), 15)
        self.assertEqual(self.limiter.attempts("key"), 1)

        self.now += timedelta(seconds=15)
        self.assertEqual(self.limiter.attempts("key"), 0)
        self.assertEqual(self.limiter.available_in("key"), 0)
        self.assertEqual(self.limiter.hit("key"), 1)

    def test_clear_resets_key(self) -> None:
        self.limiter.hit("key")
        self.limiter.hit("key")
        self.limiter.clear("key")
        self.assertEqual(self.limiter.attempts("key"), 0)

    def test_expired_buckets_are_swept_on_hit(self) -> None:
        for index in range(5000):
            self.limiter.hit(f"login|user{index}@example.com|10.0.0.1", decay_seconds=60)
        self.limiter.hit("long", decay_seconds=300)
        self.assertEqual(len(self.limiter), 5001)

        self.now += timedelta(seconds=61)
        self.limiter.hit("fresh")

        self.assertEqual(len(self.limiter), 2)
        self.assertEqual(self.limiter.attempts("long"), 1)
        self.assertEqual(self.limiter.attempts("fresh"), 1)

    def test_sweep_runs_at_most_once_per_interval(self) -> None:
        self.limiter.hit("first", decay_seconds=1)
        self.now += timedelta(seconds=2)
        self.limiter.hit("second", decay_seconds=1)
        # The first hit already swept, so the expired bucket survives until the next interval.
        self.assertEqual(len(self.limiter), 2)

        self.now += timedelta(seconds=60)
        self.limiter.hit("third")
        self.assertEqual(len(self.limiter), 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
