"""
api/routes/v1/auth.py -- OTP login, session, and member directory endpoints.

Routes:
  POST /api/v1/auth/otp          -- request a one-time passcode (public)
  POST /api/v1/auth/otp/verify   -- submit the code; sets session cookies (public)
  POST /api/v1/auth/logout       -- clears session cookies; always 200 (public)
  GET  /api/v1/auth/me           -- verified session projection (requires auth)
  GET  /api/v1/auth/members      -- list members (admin only)
  POST /api/v1/auth/members      -- add a member (admin only)

Security:
  [H2] Both OTP endpoints are rate-limited per IP by slowapi, on top of the
       per-identity hourly dispatch budget enforced by the issuer.
  [E1] POST /otp answers identically whether or not the email belongs to a
       member, so it cannot be used to enumerate the directory.
  [E2] POST /otp/verify returns one generic invalid_code error for every
       rejection cause: no challenge, expired, exhausted, wrong code, unknown
       or inactive member.
  [M5] Cache-Control: no-store on every response that carries a code or a session.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    MemberCreate,
    MemberResponse,
    MessageResponse,
    OTPRequest,
    OTPRequestResponse,
    OTPVerifyRequest,
    SessionResponse,
)
from auth.cookies import clear_session, establish_session
from auth.dependencies import get_current_session, require_admin
from auth.models import Member, MemberStatus, Purpose, Rejected, SessionClaims
from auth.otp import OTPIssuer, OTPVerifier
from auth.store import AuthStore
from auth.tokens import create_session_token, decode_session_token
from core.config import get_settings

logger = logging.getLogger("obog.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/otp:          public -- the login flow starts unauthenticated
# - POST /api/v1/auth/otp/verify:   public
# - POST /api/v1/auth/logout:       public -- clearing cookies needs no prior auth
# - GET  /api/v1/auth/me:           requires auth (get_current_session)
# - GET  /api/v1/auth/members:      requires admin (require_admin)
# - POST /api/v1/auth/members:      requires admin (require_admin)
router = APIRouter()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _invalid_code() -> JSONResponse:
    return _no_store(
        JSONResponse(
            status_code=401,
            content={
                "error": {
                    "code": "invalid_code",
                    "message": "The code is invalid or has expired. Request a new code and try again.",
                }
            },
        )
    )


# ---------------------------------------------------------------------------
# OTP login flow
# ---------------------------------------------------------------------------


@limiter.limit(_settings.otp_request_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/otp", response_model=OTPRequestResponse)
def request_otp(request: Request, body: OTPRequest, background_tasks: BackgroundTasks) -> JSONResponse:
    """Issue a one-time passcode for (email, purpose) and send it by email.

    Registration codes go to any address; the registration service decides
    what to do with a verified address. Login and password reset codes go only
    to active members. Everyone else gets a decoy [E1]: the same response and
    the same rate-limit accounting, but nothing is stored or sent.

    RateLimited propagates to the handler in api/main.py (429 + Retry-After).
    """
    store: AuthStore = request.app.state.auth_store
    issuer: OTPIssuer = request.app.state.otp_issuer
    now = _now()

    eligible = body.purpose is Purpose.register
    if not eligible:
        member = store.get_by_email(body.email)
        eligible = member is not None and member.status is MemberStatus.active

    if eligible:
        issued = issuer.issue(body.email, body.purpose, now, background=background_tasks)
    else:
        issued = issuer.issue_decoy(body.email, body.purpose, now)

    content = OTPRequestResponse(
        message="If the address can receive a code, one has been sent.",
        email=issued.identity,
        expires_at=issued.expires_at.isoformat(),
        otp_code=issued.code,
    ).model_dump(exclude_none=True)
    return _no_store(JSONResponse(status_code=200, content=content, background=background_tasks))


@limiter.limit(_settings.otp_verify_rate_limit)  # [H2]
@router.post("/auth/otp/verify", response_model=SessionResponse)
def verify_otp(request: Request, body: OTPVerifyRequest) -> JSONResponse:
    """Check a submitted code; on success mint a session and set its cookies.

    A session is only ever issued to an active member of the directory. A
    correct code for an address outside the directory still consumes the
    challenge but gets the same generic error as a wrong code [E2].
    """
    store: AuthStore = request.app.state.auth_store
    verifier: OTPVerifier = request.app.state.otp_verifier
    now = _now()

    result = verifier.verify(body.email, body.purpose, body.otp_code, now)
    if isinstance(result, Rejected):
        logger.info("OTP verification rejected (purpose=%s, reason=%s)", body.purpose.value, result.reason.value)
        return _invalid_code()

    member = store.get_by_email(result.identity)
    if member is None or member.status is not MemberStatus.active:
        logger.warning("Verified OTP for an address with no active membership (purpose=%s)", body.purpose.value)
        return _invalid_code()

    token = create_session_token(member.email, member.role, member.display_name, now=now)
    claims = decode_session_token(token, now)
    store.update_last_login(member.id)
    logger.info("Session established (role=%s)", member.role.value)

    resp = JSONResponse(status_code=200, content=SessionResponse.from_claims(claims).model_dump(mode="json"))
    establish_session(resp, token, member.role)
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear both session cookies. Succeeds with or without a session."""
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session(resp)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=SessionResponse)
async def me(session: SessionClaims = Depends(get_current_session)) -> SessionResponse:
    """Return the verified session. Read from the token only, no DB lookup."""
    return SessionResponse.from_claims(session)


# ---------------------------------------------------------------------------
# Member directory (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/members", response_model=list[MemberResponse])
def list_members(
    request: Request,
    session: SessionClaims = Depends(require_admin),
) -> list[MemberResponse]:
    """List all members. Admin only."""
    store: AuthStore = request.app.state.auth_store
    return [MemberResponse.from_member(m) for m in store.list_members()]


@router.post("/auth/members", response_model=MemberResponse, status_code=201)
def create_member(
    request: Request,
    body: MemberCreate,
    session: SessionClaims = Depends(require_admin),
) -> MemberResponse:
    """Add a member to the directory. Admin only.

    Members are pre-created; the OTP login flow never creates accounts.
    """
    store: AuthStore = request.app.state.auth_store
    try:
        store.create_member(
            Member(email=body.email, role=body.role, display_name=body.display_name, status=body.status)
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A member with that email already exists."},
        ) from exc

    created = store.get_by_email(body.email)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Member not found after write."},
        )
    logger.info("Member created by admin (role=%s)", created.role.value)
    return MemberResponse.from_member(created)
