"""
auth/rate_limit.py -- Per-identity cap on OTP dispatches per UTC calendar hour.

This is the limiter for the email channel, keyed by the identity the code is
sent TO. It complements the per-IP slowapi limits in api/limiter.py, which key
on the client sending the request.

Failure policy: FAIL OPEN. If the backing store raises, try_consume() logs a
warning and returns True. Blocking every login while the counter table is
unavailable would lock out all members; the attempt ceiling in auth/otp.py
still bounds what an attacker can do with extra codes. Do not change this
without revisiting that trade-off.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from auth.store import AuthStore

logger = logging.getLogger("obog.auth.rate_limit")


def hour_key(now: datetime) -> str:
    """Bucket key for the calendar hour containing now, e.g. '2026-10-19T14'."""
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")


class DispatchRateLimiter:
    """Allow at most `ceiling` dispatches per identity per calendar hour."""

    def __init__(self, store: AuthStore, ceiling: int = 100) -> None:
        self.store = store
        self.ceiling = ceiling

    def try_consume(self, identity: str, now: datetime) -> bool:
        """Count one dispatch for identity. Returns False once the hour is full."""
        key = hour_key(now)
        try:
            allowed = self.store.increment_bucket(identity, key, self.ceiling)
        except SQLAlchemyError:
            logger.warning("Rate limit store unavailable; allowing dispatch (fail-open)", exc_info=True)
            return True
        if not allowed:
            logger.info("OTP dispatch limit reached for bucket %s", key)
        return allowed

    @staticmethod
    def retry_after(now: datetime) -> int:
        """Seconds until the next bucket opens (always at least 1)."""
        current = now.astimezone(timezone.utc)
        next_hour = current.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        return max(1, int((next_hour - current).total_seconds()))
