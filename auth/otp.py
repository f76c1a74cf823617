"""
auth/otp.py -- One-time passcode issuance and verification.

Challenge state machine (one row per identity + purpose):

    active --correct code------------------> consumed
    active --now >= expires_at-------------> expired
    active --wrong code, attempts hit max--> exhausted

consumed, expired, and exhausted are terminal. Only a new issue() call (which
replaces the row) brings the key back to active.

Verification rules are evaluated in a fixed order: not found, expired,
exhausted, mismatch, success. The store's conditional UPDATEs re-check the
preconditions at write time, so the outcome stays correct when several
requests race on the same challenge; a request that loses the race re-reads
the row and reports whatever state the winner left behind.

Dispatch is fire-and-forget from the issuer's point of view: the challenge is
stored before the code is handed to the dispatcher, and a DispatchFailed is
logged, not raised. The member can ask for a resend.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta

from fastapi import BackgroundTasks

from auth.dispatch import OTPDispatcher
from auth.errors import DispatchFailed, RateLimited
from auth.models import (
    Authenticated,
    ChallengeStatus,
    IssuedChallenge,
    OTPChallenge,
    Purpose,
    Rejected,
    RejectReason,
    VerificationResult,
)
from auth.rate_limit import DispatchRateLimiter
from auth.store import AuthStore
from auth.tokens import hash_otp_code, otp_code_matches

logger = logging.getLogger("obog.auth.otp")


def generate_code(length: int = 6) -> str:
    """Uniformly random numeric code from the OS CSPRNG, zero-padded."""
    return f"{secrets.randbelow(10**length):0{length}d}"


class OTPIssuer:
    def __init__(
        self,
        store: AuthStore,
        limiter: DispatchRateLimiter,
        dispatcher: OTPDispatcher,
        ttl_seconds: int = 600,
        code_length: int = 6,
        expose_code: bool = False,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.dispatcher = dispatcher
        self.ttl = timedelta(seconds=ttl_seconds)
        self.code_length = code_length
        # Only debug deployments hand the raw code back to the caller.
        self.expose_code = expose_code

    def issue(
        self,
        identity: str,
        purpose: Purpose,
        now: datetime,
        background: BackgroundTasks | None = None,
    ) -> IssuedChallenge:
        """Create a challenge for (identity, purpose) and dispatch its code.

        Raises RateLimited when the identity's hourly dispatch budget is spent.
        With `background`, dispatch runs after the HTTP response is sent.
        """
        self._consume_budget(identity, now)

        code = generate_code(self.code_length)
        expires_at = now + self.ttl
        self.store.replace_challenge(
            OTPChallenge(
                identity=identity,
                purpose=purpose,
                code_digest=hash_otp_code(identity, purpose, code),
                issued_at=now,
                expires_at=expires_at,
            )
        )
        logger.info("OTP challenge issued (purpose=%s, expires_at=%s)", purpose.value, expires_at.isoformat())

        if background is not None:
            background.add_task(self._dispatch, identity, code, purpose)
        else:
            self._dispatch(identity, code, purpose)

        return IssuedChallenge(
            identity=identity,
            purpose=purpose,
            expires_at=expires_at,
            code=code if self.expose_code else None,
        )

    def issue_decoy(self, identity: str, purpose: Purpose, now: datetime) -> IssuedChallenge:
        """Answer like issue() for an identity that must not receive a code.

        Spends rate-limit budget exactly as issue() does, so the two paths are
        indistinguishable to the caller, but stores and sends nothing.
        """
        self._consume_budget(identity, now)
        logger.info("OTP requested for unknown identity (purpose=%s); nothing sent", purpose.value)
        return IssuedChallenge(identity=identity, purpose=purpose, expires_at=now + self.ttl)

    def _consume_budget(self, identity: str, now: datetime) -> None:
        if not self.limiter.try_consume(identity, now):
            raise RateLimited(identity, self.limiter.retry_after(now))

    def _dispatch(self, identity: str, code: str, purpose: Purpose) -> None:
        try:
            self.dispatcher.send(identity, code, purpose)
        except DispatchFailed as exc:
            logger.error("OTP dispatch failed (purpose=%s): %s", purpose.value, exc.reason)


class OTPVerifier:
    def __init__(self, store: AuthStore, max_attempts: int = 5, bypass_code: str | None = None) -> None:
        self.store = store
        self.max_attempts = max_attempts
        # Fixed always-valid code for local testing. Injected at construction
        # so production wiring provably never carries one (see core/config.py [S4]).
        self._bypass_code = bypass_code or None

    def verify(self, identity: str, purpose: Purpose, submitted_code: str, now: datetime) -> VerificationResult:
        if self._bypass_code is not None and hmac.compare_digest(
            submitted_code.encode(), self._bypass_code.encode()
        ):
            logger.warning("OTP bypass code accepted (purpose=%s)", purpose.value)
            return Authenticated(identity)

        challenge = self.store.get_challenge(identity, purpose)
        rejection = self._precheck(challenge, now)
        if rejection is not None:
            return rejection

        if not otp_code_matches(challenge.code_digest, identity, purpose, submitted_code):
            if not self.store.record_failed_attempt(challenge.id, self.max_attempts):
                return self._reread(identity, purpose, now)
            return Rejected(RejectReason.mismatch)

        if self.store.consume_challenge(challenge.id, self.max_attempts, now):
            return Authenticated(identity)
        return self._reread(identity, purpose, now)

    def _precheck(self, challenge: OTPChallenge | None, now: datetime) -> Rejected | None:
        """Rules 1-3: not found, expired, exhausted. None means still active."""
        if challenge is None or challenge.status is ChallengeStatus.consumed:
            return Rejected(RejectReason.not_found)
        if challenge.status is ChallengeStatus.expired:
            return Rejected(RejectReason.expired)
        if now >= challenge.expires_at:
            self.store.mark_expired(challenge.id)
            return Rejected(RejectReason.expired)
        if challenge.status is ChallengeStatus.exhausted or challenge.attempts >= self.max_attempts:
            return Rejected(RejectReason.exhausted)
        return None

    def _reread(self, identity: str, purpose: Purpose, now: datetime) -> Rejected:
        # A concurrent request moved the challenge out of active between our
        # read and our write.
        rejection = self._precheck(self.store.get_challenge(identity, purpose), now)
        return rejection or Rejected(RejectReason.not_found)
