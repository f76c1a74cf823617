"""
api/main.py -- FastAPI application entry point for the member site auth core.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- one log line per response with latency
  5. route_gate            -- runs auth/gate.authorize() on every page request

Lifespan builds the store and the OTP services once and hangs them on
app.state; route handlers read them from request.app.state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.cookies import TOKEN_COOKIE, clear_session
from auth.dispatch import OTPDispatcher
from auth.errors import InvalidToken, RateLimited, Unauthorized
from auth.gate import authorize, is_excluded
from auth.otp import OTPIssuer, OTPVerifier
from auth.rate_limit import DispatchRateLimiter
from auth.store import AuthStore
from auth.tokens import decode_session_token
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("obog.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_services(app: FastAPI, store: AuthStore) -> None:
    """Wire the OTP services around `store` and attach everything to app.state.

    Split out of lifespan so tests can wire the same graph around a
    throwaway database.
    """
    settings = get_settings()
    app.state.auth_store = store
    app.state.dispatch_limiter = DispatchRateLimiter(store, ceiling=settings.otp_hourly_limit)
    app.state.dispatcher = OTPDispatcher(
        settings.dispatch_webhook_url,
        settings.dispatch_secret,
        timeout=settings.dispatch_timeout_seconds,
    )
    app.state.otp_issuer = OTPIssuer(
        store,
        app.state.dispatch_limiter,
        app.state.dispatcher,
        ttl_seconds=settings.otp_ttl_seconds,
        code_length=settings.otp_length,
        expose_code=settings.debug,
    )
    # The bypass code is only ever non-empty under DEBUG (enforced by Settings).
    app.state.otp_verifier = OTPVerifier(
        store,
        max_attempts=settings.otp_max_attempts,
        bypass_code=settings.otp_bypass_code or None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown."""
    logger.info("Auth API starting up (debug=%s)", _settings.debug)
    build_services(app, AuthStore(_settings.database_url))
    if not _settings.dispatch_webhook_url:
        logger.warning("DISPATCH_WEBHOOK_URL not set -- OTP codes will be written to the log")

    yield

    app.state.auth_store.close()
    logger.info("Auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="OB/OG Auth API",
    description="One-time passcode login, sessions, and route authorization for the member site.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if _settings.debug else None,
    redoc_url=None,
    openapi_url="/api/openapi.json" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Route gate middleware
#
# Registered first so it ends up innermost: TrustedHost and CORS have already
# run when the gate sees the request. The gate trusts nothing but a freshly
# verified auth-token; any verification failure is treated as "no session".
# ---------------------------------------------------------------------------


@app.middleware("http")
async def route_gate(request: Request, call_next):
    """Allow the request through or answer it with a 302 from the gate."""
    path = request.url.path
    if is_excluded(path):
        return await call_next(request)

    token = request.cookies.get(TOKEN_COOKIE)
    decision = authorize(path, decode_session_token(token))
    if decision.allowed:
        return await call_next(request)

    logger.info("Gate redirect %s -> %s (%s)", path, decision.location, decision.reason)
    response = RedirectResponse(decision.location, status_code=302)
    if decision.to_login and token:
        # A cookie was sent but did not verify: stale, expired, or forged.
        clear_session(response)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the last one added is the
# outermost. Added innermost-first here: SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(RateLimited)
async def otp_rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    """Per-identity hourly dispatch budget spent. Retry-After points at the next hour."""
    response = _error(429, "rate_limited", "Too many codes requested. Try again later.")
    response.headers["Retry-After"] = str(exc.retry_after)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Per-IP slowapi limit exceeded.

    slowapi stores the window on the exception as exc.retry_after when it
    knows it; fall back to a minute.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(InvalidToken)
async def invalid_token_handler(request: Request, exc: InvalidToken) -> JSONResponse:
    return _error(401, "unauthorized", str(exc))


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
    # The role is logged, never echoed to the client.
    logger.info("Forbidden: role=%s %s %s", exc.role, request.method, request.url.path)
    return _error(403, "forbidden", "You do not have access to this resource.")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the database answers."""
    database = "ok"
    try:
        request.app.state.auth_store.ping()
    except SQLAlchemyError:
        logger.warning("Health check: database unavailable", exc_info=True)
        database = "unavailable"
    return HealthResponse(version=VERSION, database=database)
