"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. "auth-token" cookie -- set by the OTP verification endpoint.
  2. Authorization: Bearer <token> header -- non-browser API clients.

Both converge on SessionClaims decoded from a freshly verified token. There is
no DB lookup: the token is the session, and role always comes from it, never
from the "user-role" hint cookie.

try_get_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises InvalidToken (HTTP 401).
require_admin() wraps get_current_session() and raises Unauthorized (HTTP 403).
The HTTP mapping lives in the exception handlers in api/main.py.
"""

from __future__ import annotations

from fastapi import Request

from auth.cookies import TOKEN_COOKIE
from auth.errors import InvalidToken, Unauthorized
from auth.models import SessionClaims
from auth.tokens import decode_session_token


def try_get_session(request: Request) -> SessionClaims | None:
    """Return verified session claims for the request, or None. Never raises."""
    token: str | None = request.cookies.get(TOKEN_COOKIE)

    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    return decode_session_token(token)


def get_current_session(request: Request) -> SessionClaims:
    """Require a valid session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: SessionClaims = Depends(get_current_session)): ...
    """
    claims = try_get_session(request)
    if claims is None:
        raise InvalidToken()
    return claims


def require_admin(request: Request) -> SessionClaims:
    """Require a valid session whose verified role is admin."""
    claims = get_current_session(request)
    if not claims.is_admin:
        raise Unauthorized(claims.role.value)
    return claims
