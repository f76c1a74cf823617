"""
auth/errors.py -- Exceptions raised by the authentication core.

Challenge verification failures are NOT exceptions: the verifier returns a
Rejected(reason) value so the caller can collapse every reason into one
generic response. The exceptions below are the cases a caller must handle
distinctly:

  RateLimited     -- per-identity dispatch ceiling reached (HTTP 429).
  DispatchFailed  -- the email webhook did not accept the code. Logged only.
  InvalidToken    -- missing, forged, corrupted, or expired session (HTTP 401).
  Unauthorized    -- valid session, insufficient role (HTTP 403).
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication-core errors."""


class RateLimited(AuthError):
    def __init__(self, identity: str, retry_after: int) -> None:
        super().__init__(f"OTP dispatch limit reached; retry in {retry_after}s")
        self.identity = identity
        self.retry_after = retry_after


class DispatchFailed(AuthError):
    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"OTP dispatch failed: {reason}")
        self.identity = identity
        self.reason = reason


class InvalidToken(AuthError):
    """Raised when a request carries no usable session.

    Deliberately carries no detail about which check failed.
    """

    def __init__(self) -> None:
        super().__init__("Authentication required.")


class Unauthorized(AuthError):
    def __init__(self, role: str) -> None:
        super().__init__(f"Role {role!r} is not allowed to access this resource.")
        self.role = role
