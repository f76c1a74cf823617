"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Enforces the secret policy below at startup, so a misconfigured
      deployment fails before it serves a single request.

Security notes:
  [S1] SECRET_KEY signs session tokens and keys the OTP code digests. Missing
       in production is a hard startup failure; there is no built-in fallback
       value. Debug mode generates a random per-process key with a warning.

  [S2] SECRET_KEY shorter than 32 chars is rejected outright.

  [S3] The OTP dispatch webhook is authenticated by DISPATCH_SECRET. A
       configured webhook URL without a secret is a startup failure, and so is
       a production deployment with no webhook at all.

  [S4] OTP_BYPASS_CODE (a fixed always-valid code for local testing) is only
       accepted together with DEBUG=true.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("obog.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments (DEBUG=true) without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the "not configured" sentinel. The validator either
    # generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///obog_auth.db"

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    # None means "derive from debug": Secure cookies everywhere except local dev.
    secure_cookies: bool | None = None
    session_ttl_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # One-time passcodes
    # ------------------------------------------------------------------

    otp_length: int = 6
    otp_ttl_seconds: int = 10 * 60
    otp_max_attempts: int = 5
    otp_hourly_limit: int = 100
    otp_bypass_code: str = ""

    # ------------------------------------------------------------------
    # Outbound dispatch (email webhook)
    # ------------------------------------------------------------------

    dispatch_webhook_url: str = ""
    dispatch_secret: str = ""
    dispatch_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # Per-IP limits enforced by slowapi, on top of the per-identity hourly cap.
    otp_request_rate_limit: str = "10/minute"
    otp_verify_rate_limit: str = "10/minute"

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the startup secret policy [S1]-[S4]."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        if self.dispatch_webhook_url and not self.dispatch_secret:
            raise ValueError("DISPATCH_SECRET is required when DISPATCH_WEBHOOK_URL is set.")
        if not self.dispatch_webhook_url and not self.debug:
            raise ValueError(
                "DISPATCH_WEBHOOK_URL is required in production mode. "
                "Without it one-time passcodes cannot be delivered."
            )

        if self.otp_bypass_code:
            if not self.debug:
                raise ValueError("OTP_BYPASS_CODE is only allowed with DEBUG=true.")
            logger.warning("WARNING: OTP bypass code is enabled. Never use this outside local testing.")

        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
