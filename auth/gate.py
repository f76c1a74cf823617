"""
auth/gate.py -- Route authorizer: classify a request path, then allow or redirect.

A pure function of (path, verified session claims). It performs no I/O; the
middleware in api/main.py reads the cookie, verifies the token, and hands the
result here.

Rules are evaluated top to bottom and the first match wins:

  1. admin-only  no session -> login (with return path)
                 session, role != admin -> "/" with error=access_denied
  2. protected   no session -> login (with return path)
  3. auth-only   session -> landing page (a signed-in member has no business
                 on the login / register / OTP pages)
  4. anything else is public

"/admin" also appears in the protected table. Admin-only must stay first or
the role check is skipped.

Prefix matching is per path segment: "/admin" covers "/admin" and
"/admin/users" but not "/administrator". Paths are matched after collapsing
repeated slashes and folding case, so "//admin" and "/Admin" are admin-only.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

from auth.models import SessionClaims


class RouteClass(str, Enum):
    public = "public"
    auth_only = "auth-only"
    protected = "protected"
    admin_only = "admin-only"


@dataclass(frozen=True)
class RouteRules:
    admin_only: tuple[str, ...] = ("/admin",)
    protected: tuple[str, ...] = ("/posts", "/profile", "/bookmarks", "/notifications", "/admin")
    auth_only: tuple[str, ...] = ("/auth/login", "/auth/register", "/auth/otp")
    # Never gated: JSON API (guarded by its own dependencies), assets, and
    # framework internals.
    excluded: tuple[str, ...] = ("/api/", "/static/", "/_internal/", "/favicon.ico")
    login_path: str = "/auth/login"
    landing_path: str = "/posts"
    denied_path: str = "/"


DEFAULT_RULES = RouteRules()

_SLASHES = re.compile(r"/{2,}")


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    route_class: RouteClass
    location: str | None = None
    # True when the redirect is a "please sign in" redirect. The middleware
    # clears stale cookies only in that case.
    to_login: bool = False
    reason: str = ""


def normalize_path(path: str) -> str:
    """Collapse repeated slashes and fold case, for classification only."""
    return _SLASHES.sub("/", path).lower()


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def is_excluded(path: str, rules: RouteRules = DEFAULT_RULES) -> bool:
    """Static assets and internal paths bypass the gate entirely.

    A file-like final segment (style.css, logo.png, robots.txt) is only
    exempt on a public path; "/admin/members.json" is still gated.
    """
    if any(path.startswith(p) if p.endswith("/") else path == p for p in rules.excluded):
        return True
    if "." not in path.rsplit("/", 1)[-1]:
        return False
    return classify(path, rules) is RouteClass.public


def classify(path: str, rules: RouteRules = DEFAULT_RULES) -> RouteClass:
    path = normalize_path(path)
    if any(_matches(path, p) for p in rules.admin_only):
        return RouteClass.admin_only
    if any(_matches(path, p) for p in rules.protected):
        return RouteClass.protected
    if any(_matches(path, p) for p in rules.auth_only):
        return RouteClass.auth_only
    return RouteClass.public


def _safe_return_path(path: str) -> str | None:
    """Only relative, non protocol-relative paths may be used as a return target."""
    if path.startswith("/") and not path.startswith("//") and path != "/":
        return path
    return None


def login_redirect(path: str, rules: RouteRules = DEFAULT_RULES) -> str:
    target = _safe_return_path(path)
    if target is None:
        return rules.login_path
    return f"{rules.login_path}?{urlencode({'redirect': target}, safe='/')}"


def authorize(path: str, claims: SessionClaims | None, rules: RouteRules = DEFAULT_RULES) -> GateDecision:
    """Decide what to do with a request for `path`.

    `claims` must come from a freshly verified token (None when the cookie is
    missing or failed verification). The role hint cookie is never an input.
    """
    route_class = classify(path, rules)

    if route_class is RouteClass.admin_only:
        if claims is None:
            return GateDecision(False, route_class, login_redirect(path, rules), to_login=True, reason="no_session")
        if not claims.is_admin:
            location = f"{rules.denied_path}?{urlencode({'error': 'access_denied'})}"
            return GateDecision(False, route_class, location, reason="access_denied")
        return GateDecision(True, route_class)

    if route_class is RouteClass.protected:
        if claims is None:
            return GateDecision(False, route_class, login_redirect(path, rules), to_login=True, reason="no_session")
        return GateDecision(True, route_class)

    if route_class is RouteClass.auth_only:
        if claims is not None:
            return GateDecision(False, route_class, rules.landing_path, reason="already_signed_in")
        return GateDecision(True, route_class)

    return GateDecision(True, route_class)
