"""
auth/dispatch.py -- Client for the outbound OTP email webhook.

The email itself is rendered and sent by an external service. This module only
POSTs the contract payload to it:

    {"email": ..., "otp_code": ..., "purpose": ..., "api_secret": ...}

api_secret authenticates this server to the webhook; it is not a user
credential. The webhook answers with a JSON envelope whose "status" is
"success" or "error". Some hosts always answer HTTP 200, so the envelope is
checked as well as the status code.

No webhook URL configured means local development (Settings refuses to start
that way in production): the code is written to the log instead of sent.
"""

from __future__ import annotations

import logging

import requests

from auth.errors import DispatchFailed
from auth.models import Purpose

logger = logging.getLogger("obog.dispatch")


class OTPDispatcher:
    def __init__(
        self,
        webhook_url: str,
        secret: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self._secret = secret
        self.timeout = timeout
        # Redirects are never expected from the webhook; refuse to follow them
        # so the shared secret is not replayed to another host.
        self._session = session or requests.Session()
        self._session.max_redirects = 0

    def send(self, identity: str, code: str, purpose: Purpose) -> bool:
        """Deliver a code. Returns True when the webhook accepted it.

        Raises DispatchFailed on transport errors, non-2xx responses, or an
        error envelope.
        """
        if not self.webhook_url:
            logger.info("[DEV] OTP for %s (%s): %s", identity, purpose.value, code)
            return True

        payload = {
            "email": identity,
            "otp_code": code,
            "purpose": purpose.value,
            "api_secret": self._secret,
        }
        try:
            resp = self._session.post(self.webhook_url, json=payload, timeout=self.timeout, allow_redirects=False)
        except requests.RequestException as exc:
            raise DispatchFailed(identity, type(exc).__name__) from exc

        if not 200 <= resp.status_code < 300:
            raise DispatchFailed(identity, f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("status") == "error":
            raise DispatchFailed(identity, str(body.get("message") or "webhook reported an error"))
        return True
