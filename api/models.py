"""
API request and response models for the member authentication endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Member, MemberStatus, Purpose, Role, SessionClaims
from core.config import get_settings

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


class _EmailBody(BaseModel):
    """Base for request bodies keyed by an email identity.

    The field_validator runs before the pattern check (mode='before') so the
    identity is trimmed and lower-cased once, here, and every layer below sees
    the normalized form.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=254, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> str:
        return str(value).strip().lower()


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class OTPRequest(_EmailBody):
    """Request body for POST /api/v1/auth/otp."""

    purpose: Purpose = Purpose.login


class OTPVerifyRequest(_EmailBody):
    """Request body for POST /api/v1/auth/otp/verify."""

    otp_code: str = Field(max_length=32, description="The OTP_LENGTH-digit code from the email.")
    purpose: Purpose = Purpose.login

    @field_validator("otp_code")
    @classmethod
    def check_code_format(cls, value: str) -> str:
        # [0-9] rather than \d: \d also accepts non-ASCII digits.
        length = get_settings().otp_length
        if not re.fullmatch(f"[0-9]{{{length}}}", value):
            raise ValueError(f"otp_code must be exactly {length} digits")
        return value


class MemberCreate(_EmailBody):
    """Request body for POST /api/v1/auth/members."""

    role: Role = Role.current
    display_name: str = Field(min_length=1, max_length=100)
    status: MemberStatus = MemberStatus.active


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class OTPRequestResponse(BaseModel):
    """Response for POST /api/v1/auth/otp.

    Identical for members and non-members. otp_code is populated only on
    DEBUG deployments so local testing works without a mail webhook.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    email: str
    expires_at: str
    otp_code: Optional[str] = None


class SessionResponse(BaseModel):
    """Response for a successful POST /api/v1/auth/otp/verify and GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    identity: str
    role: Role
    display_name: str
    expires_at: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "SessionResponse":
        return cls(
            identity=claims.identity,
            role=claims.role,
            display_name=claims.display_name,
            expires_at=claims.expires_at.isoformat(),
        )


class MemberResponse(BaseModel):
    """One row in the member directory."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: Role
    status: MemberStatus
    display_name: str
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_member(cls, member: Member) -> "MemberResponse":
        return cls(
            id=member.id,
            email=member.email,
            role=member.role,
            status=member.status,
            display_name=member.display_name,
            created_at=member.created_at or "",
            last_login=member.last_login,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
