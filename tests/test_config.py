"""
tests/test_config.py -- Startup secret policy enforced by core.config.Settings.

Settings is instantiated directly with keyword arguments, which take priority
over the DEBUG=true environment conftest sets for the rest of the suite.
"""

from __future__ import annotations

import pytest

from core.config import Settings, get_settings

KEY = "k" * 32
WEBHOOK = "https://mail.example.com/hooks/otp"


def _prod(**overrides) -> Settings:
    values = {
        "debug": False,
        "secret_key": KEY,
        "dispatch_webhook_url": WEBHOOK,
        "dispatch_secret": "webhook-secret",
    }
    values.update(overrides)
    return Settings(**values)


class TestSecretKey:
    def test_missing_in_production_fails(self) -> None:
        with pytest.raises(ValueError, match="SECRET_KEY is required"):
            _prod(secret_key="")

    def test_generated_in_debug(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) == 64

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least 32"):
            _prod(secret_key="short")

    def test_short_key_rejected_in_debug_too(self) -> None:
        with pytest.raises(ValueError, match="at least 32"):
            Settings(debug=True, secret_key="short")


class TestDispatch:
    def test_webhook_without_secret_fails(self) -> None:
        with pytest.raises(ValueError, match="DISPATCH_SECRET"):
            _prod(dispatch_secret="")

    def test_production_without_webhook_fails(self) -> None:
        with pytest.raises(ValueError, match="DISPATCH_WEBHOOK_URL"):
            _prod(dispatch_webhook_url="", dispatch_secret="")

    def test_debug_without_webhook_allowed(self) -> None:
        assert Settings(debug=True, secret_key=KEY, dispatch_webhook_url="").dispatch_webhook_url == ""


class TestBypassCode:
    def test_rejected_outside_debug(self) -> None:
        with pytest.raises(ValueError, match="OTP_BYPASS_CODE"):
            _prod(otp_bypass_code="000000")

    def test_allowed_in_debug(self) -> None:
        assert Settings(debug=True, secret_key=KEY, otp_bypass_code="000000").otp_bypass_code == "000000"


class TestDefaults:
    def test_secure_cookies_follow_debug(self) -> None:
        assert _prod().secure_cookies is True
        assert Settings(debug=True, secret_key=KEY).secure_cookies is False

    def test_explicit_secure_cookies_kept(self) -> None:
        assert Settings(debug=True, secret_key=KEY, secure_cookies=True).secure_cookies is True

    def test_otp_and_session_defaults(self) -> None:
        settings = _prod()
        assert settings.otp_length == 6
        assert settings.otp_ttl_seconds == 600
        assert settings.otp_max_attempts == 5
        assert settings.otp_hourly_limit == 100
        assert settings.session_ttl_seconds == 86400

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()
