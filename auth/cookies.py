"""
auth/cookies.py -- Binding the session to the browser.

Two cookies, always written and cleared together:

  auth-token  the signed session JWT. The only thing authorization trusts.
  user-role   a plain role hint so the UI can branch (e.g. show the admin
              menu) without a round trip. Never read by the server for an
              authorization decision; the gate re-derives role from the token.

Attributes:
  httponly=True   JS cannot read either cookie (XSS mitigation).
  samesite="lax"  sent on top-level navigations, not on cross-site POSTs.
  secure          Settings.secure_cookies, which defaults to True everywhere
                  except DEBUG deployments.
  no domain       host-only: never shared with sibling subdomains.
  max_age         Settings.session_ttl_seconds, so cookie and token expire together.
"""

from __future__ import annotations

from starlette.responses import Response

from auth.models import Role
from core.config import get_settings

TOKEN_COOKIE = "auth-token"
ROLE_COOKIE = "user-role"

_settings = get_settings()


def establish_session(response: Response, token: str, role: Role) -> None:
    """Write both session cookies on the response."""
    for name, value in ((TOKEN_COOKIE, token), (ROLE_COOKIE, role.value)):
        response.set_cookie(
            name,
            value=value,
            max_age=_settings.session_ttl_seconds,
            path="/",
            httponly=True,
            samesite="lax",
            secure=bool(_settings.secure_cookies),
        )


def clear_session(response: Response) -> None:
    """Expire both session cookies. Safe to call when none were set."""
    for name in (TOKEN_COOKIE, ROLE_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            httponly=True,
            samesite="lax",
            secure=bool(_settings.secure_cookies),
        )
