"""
tests/test_cookies.py -- Attributes of the session cookies.

Both cookies must be httpOnly, host-only (no Domain), SameSite=Lax, Path=/,
and live exactly as long as the token. Secure follows Settings.secure_cookies.
"""

from __future__ import annotations

import pytest
from starlette.responses import Response

from auth import cookies
from auth.cookies import ROLE_COOKIE, TOKEN_COOKIE, clear_session, establish_session
from auth.models import Role


def _set_cookies(response: Response) -> dict[str, str]:
    headers = response.headers.getlist("set-cookie")
    return {h.split("=", 1)[0]: h.lower() for h in headers}


class TestEstablishSession:
    def test_sets_both_cookies(self) -> None:
        response = Response()
        establish_session(response, "signed.jwt.value", Role.alumnus)
        jar = _set_cookies(response)
        assert set(jar) == {TOKEN_COOKIE, ROLE_COOKIE}
        assert jar[TOKEN_COOKIE].startswith("auth-token=signed.jwt.value")
        assert jar[ROLE_COOKIE].startswith("user-role=alumnus")

    @pytest.mark.parametrize("name", [TOKEN_COOKIE, ROLE_COOKIE])
    def test_attributes(self, name: str) -> None:
        response = Response()
        establish_session(response, "signed.jwt.value", Role.current)
        header = _set_cookies(response)[name]
        assert "httponly" in header
        assert "samesite=lax" in header
        assert "path=/" in header
        assert "max-age=86400" in header
        assert "domain=" not in header

    def test_not_secure_in_debug(self) -> None:
        response = Response()
        establish_session(response, "t", Role.current)
        assert "secure" not in _set_cookies(response)[TOKEN_COOKIE]

    def test_secure_when_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cookies._settings, "secure_cookies", True)
        response = Response()
        establish_session(response, "t", Role.current)
        jar = _set_cookies(response)
        assert "secure" in jar[TOKEN_COOKIE]
        assert "secure" in jar[ROLE_COOKIE]


class TestClearSession:
    def test_expires_both_cookies(self) -> None:
        response = Response()
        clear_session(response)
        jar = _set_cookies(response)
        assert set(jar) == {TOKEN_COOKIE, ROLE_COOKIE}
        for header in jar.values():
            assert "max-age=0" in header
            assert "path=/" in header

    def test_idempotent(self) -> None:
        response = Response()
        clear_session(response)
        clear_session(response)
        assert len(response.headers.getlist("set-cookie")) == 4
