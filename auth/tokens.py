"""
auth/tokens.py -- Session JWTs and OTP code digests.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       identity (sub), role, display name, iat, and a 24h exp. Verification
       returns None on ANY failure -- bad structure, bad signature, expired,
       missing or unknown claims -- so callers cannot tell the cases apart and
       neither can the client.

       Expiry is checked against an explicit `now` rather than jose's internal
       clock, so the issuer and the verifier agree on time in tests and the
       boundary is exact: valid while now < exp.

  OTP digests: HMAC-SHA256(SECRET_KEY, identity|purpose|code). A 6-digit code
       has only 10^6 values, so a plain hash in the database would be
       reversible by enumeration; keying it with SECRET_KEY means a leaked
       table is useless without the key. Comparison uses hmac.compare_digest.

  SECRET_KEY: sourced from core.config.get_settings(), which refuses to start
       in production without one [S1].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Purpose, Role, SessionClaims
from core.config import get_settings


# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ROLES = {r.value for r in Role}


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_session_token(
    identity: str,
    role: Role,
    display_name: str,
    now: datetime | None = None,
) -> str:
    """Mint a signed session token valid for Settings.session_ttl_seconds."""
    issued = now or datetime.now(timezone.utc)
    expire = issued + timedelta(seconds=_settings.session_ttl_seconds)
    payload = {
        "sub": identity,
        "role": role.value,
        "name": display_name,
        "iat": int(issued.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str | None, now: datetime | None = None) -> SessionClaims | None:
    """Verify a session token. Returns its claims, or None on any failure."""
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None

    sub = payload.get("sub")
    role = payload.get("role")
    name = payload.get("name")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub or role not in _ROLES or not isinstance(name, str):
        return None
    if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
        return None

    current = now or datetime.now(timezone.utc)
    if current.timestamp() >= exp:
        return None

    return SessionClaims(
        identity=sub,
        role=Role(role),
        display_name=name,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


# ---------------------------------------------------------------------------
# OTP code digests
# ---------------------------------------------------------------------------


def hash_otp_code(identity: str, purpose: Purpose, code: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, identity|purpose|code) as hex.

    Binding identity and purpose into the message means a digest copied from
    one challenge row to another never matches.
    """
    message = f"{identity}|{purpose.value}|{code}".encode()
    return hmac.new(_settings.secret_key.encode(), message, hashlib.sha256).hexdigest()


def otp_code_matches(expected_digest: str, identity: str, purpose: Purpose, code: str) -> bool:
    return hmac.compare_digest(expected_digest, hash_otp_code(identity, purpose, code))
