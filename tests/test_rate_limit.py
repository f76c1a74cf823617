"""
tests/test_rate_limit.py -- Unit tests for the per-identity OTP dispatch limiter.

Covers:
  - ceiling: the 100 first dispatches in an hour pass, the 101st is refused
  - a refused call does not move the counter
  - buckets are per identity and per UTC calendar hour (not hour-of-day)
  - fail-open when the store raises
  - Retry-After arithmetic
  - the ceiling holds under concurrent callers
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from auth.rate_limit import DispatchRateLimiter, hour_key
from auth.store import AuthStore

T0 = datetime(2026, 10, 19, 14, 5, tzinfo=timezone.utc)


class TestHourKey:
    def test_format(self) -> None:
        assert hour_key(T0) == "2026-10-19T14"

    def test_converts_to_utc(self) -> None:
        jst = timezone(timedelta(hours=9))
        assert hour_key(datetime(2026, 10, 19, 23, 30, tzinfo=jst)) == "2026-10-19T14"

    def test_same_hour_different_day_differs(self) -> None:
        assert hour_key(T0) != hour_key(T0 + timedelta(days=1))


class TestCeiling:
    def test_hundred_allowed_then_refused(self, store: AuthStore) -> None:
        limiter = DispatchRateLimiter(store, ceiling=100)
        results = [limiter.try_consume("a@example.com", T0) for _ in range(100)]
        assert all(results)
        assert limiter.try_consume("a@example.com", T0) is False

    def test_refusal_does_not_increment(self, store: AuthStore) -> None:
        limiter = DispatchRateLimiter(store, ceiling=3)
        for _ in range(3):
            limiter.try_consume("a@example.com", T0)
        for _ in range(5):
            assert limiter.try_consume("a@example.com", T0) is False
        assert store.get_bucket_count("a@example.com", hour_key(T0)) == 3

    def test_next_hour_is_a_fresh_bucket(self, store: AuthStore) -> None:
        limiter = DispatchRateLimiter(store, ceiling=2)
        assert limiter.try_consume("a@example.com", T0)
        assert limiter.try_consume("a@example.com", T0)
        assert not limiter.try_consume("a@example.com", T0 + timedelta(minutes=54))
        assert limiter.try_consume("a@example.com", T0 + timedelta(minutes=55))

    def test_identities_are_independent(self, store: AuthStore) -> None:
        limiter = DispatchRateLimiter(store, ceiling=1)
        assert limiter.try_consume("a@example.com", T0)
        assert not limiter.try_consume("a@example.com", T0)
        assert limiter.try_consume("b@example.com", T0)

    def test_zero_ceiling_refuses_everything(self, store: AuthStore) -> None:
        limiter = DispatchRateLimiter(store, ceiling=0)
        assert limiter.try_consume("a@example.com", T0) is False
        assert store.get_bucket_count("a@example.com", hour_key(T0)) == 0


class TestFailOpen:
    def test_store_error_allows_dispatch(self) -> None:
        broken = MagicMock(spec=AuthStore)
        broken.increment_bucket.side_effect = OperationalError("UPDATE otp_rate_buckets", {}, Exception("disk I/O"))
        limiter = DispatchRateLimiter(broken, ceiling=1)
        assert limiter.try_consume("a@example.com", T0) is True
        assert limiter.try_consume("a@example.com", T0) is True


class TestRetryAfter:
    def test_seconds_to_next_hour(self) -> None:
        now = datetime(2026, 10, 19, 14, 59, 30, tzinfo=timezone.utc)
        assert DispatchRateLimiter.retry_after(now) == 30

    def test_top_of_hour_is_full_hour(self) -> None:
        now = datetime(2026, 10, 19, 14, 0, 0, tzinfo=timezone.utc)
        assert DispatchRateLimiter.retry_after(now) == 3600

    def test_never_zero(self) -> None:
        now = datetime(2026, 10, 19, 14, 59, 59, 999999, tzinfo=timezone.utc)
        assert DispatchRateLimiter.retry_after(now) >= 1


class TestConcurrency:
    def test_ceiling_exact_under_parallel_callers(self, store: AuthStore) -> None:
        """Parallel callers on a fresh bucket race on both the INSERT and the UPDATE."""
        limiter = DispatchRateLimiter(store, ceiling=10)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: limiter.try_consume("a@example.com", T0), range(30)))
        assert results.count(True) == 10
        assert store.get_bucket_count("a@example.com", hour_key(T0)) == 10
