"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these types only own the shape of the data passed between them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    alumnus = "alumnus"
    current = "current"


class MemberStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


class Purpose(str, Enum):
    """What a one-time passcode was requested for. Part of the challenge key."""

    login = "login"
    register = "register"
    password_reset = "password_reset"


class ChallengeStatus(str, Enum):
    """Lifecycle of an OTP challenge.

    active -> consumed | expired | exhausted. The three right-hand states are
    terminal: a new challenge must be issued to recover.
    """

    active = "active"
    consumed = "consumed"
    expired = "expired"
    exhausted = "exhausted"


class RejectReason(str, Enum):
    not_found = "not_found"
    expired = "expired"
    exhausted = "exhausted"
    mismatch = "mismatch"


@dataclass
class Member:
    """A member of the closed community (student or alumnus, or an admin).

    email is the login identity and is stored normalized (lower-case).
    Only members with status == active can be issued a session.
    """

    email: str
    role: Role
    display_name: str
    id: int | None = None
    status: MemberStatus = MemberStatus.active
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class OTPChallenge:
    """One outstanding passcode for an (identity, purpose) key.

    code_digest is HMAC-SHA256 of the code; the raw code is never persisted.
    verified mirrors status == consumed and is kept for readability at call sites.
    """

    identity: str
    purpose: Purpose
    code_digest: str
    issued_at: datetime
    expires_at: datetime
    attempts: int = 0
    verified: bool = False
    status: ChallengeStatus = ChallengeStatus.active
    id: int | None = None


@dataclass(frozen=True)
class IssuedChallenge:
    """What the issuer hands back to its caller.

    code is None unless the issuer was built with expose_code=True.
    """

    identity: str
    purpose: Purpose
    expires_at: datetime
    code: str | None = None


@dataclass(frozen=True)
class Authenticated:
    identity: str


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason


VerificationResult = Authenticated | Rejected


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token. Never mutated after decoding."""

    identity: str
    role: Role
    display_name: str
    issued_at: datetime
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin
