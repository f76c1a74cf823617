"""
tests/conftest.py -- Shared test fixtures for the auth core.

This module provides:
  - store: an AuthStore on a throwaway SQLite file under tmp_path
  - client: TestClient on the real app with a patched lifespan that wires
    the OTP services around that store (follow_redirects=False)
  - add_member / session_token: helpers to seed members and mint sessions

Design: a file DB (not ':memory:') because TestClient runs sync handlers in a
thread pool and the concurrency tests hammer the store from many threads.
A plain ':memory:' database is per-connection and would present a blank
schema to every worker thread.

Environment must be set before any project import: DEBUG so get_settings()
auto-generates SECRET_KEY instead of raising, and ALLOWED_HOSTS so
TrustedHostMiddleware accepts TestClient's "testserver" Host header.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import -- Settings is read at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')

import pytest
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_services
from auth.models import Member, MemberStatus, Role
from auth.store import AuthStore
from auth.tokens import create_session_token

# Per-IP slowapi limits would trip on the volume of requests a test module
# sends from one client address. The per-identity limiter is still active.
limiter.enabled = False

# ---------------------------------------------------------------------------
# Placeholder pages
#
# Page rendering lives in another service; the gate tests only need every
# non-API path to answer 200 once the gate lets the request through.
# ---------------------------------------------------------------------------

_pages = APIRouter()


@_pages.get("/{full_path:path}", include_in_schema=False)
async def _placeholder_page(full_path: str) -> PlainTextResponse:
    return PlainTextResponse(f"page /{full_path}")


app.include_router(_pages)


# ---------------------------------------------------------------------------
# Store and client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state through the same build_services()
    the real lifespan uses, so route handlers see real services.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, store)
        yield

    return test_lifespan


@pytest.fixture
def store(tmp_path) -> Generator[AuthStore, None, None]:
    auth_store = AuthStore(db_url=f"sqlite:///{tmp_path / 'auth.db'}")
    yield auth_store
    auth_store.close()


@pytest.fixture
def client(store: AuthStore) -> Generator[TestClient, None, None]:
    """TestClient with follow_redirects=False.

    Gate tests assert on redirect *locations*, which are invisible once the
    client follows the redirect and returns the final 200 response.
    """
    app.router.lifespan_context = _patch_lifespan(store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture
def add_member(store: AuthStore) -> Callable[..., Member]:
    """Seed a member and return it as stored."""

    def _add(
        email: str,
        role: Role = Role.current,
        display_name: str = "Test Member",
        status: MemberStatus = MemberStatus.active,
    ) -> Member:
        store.create_member(Member(email=email, role=role, display_name=display_name, status=status))
        return store.get_by_email(email)

    return _add


@pytest.fixture
def session_token() -> Callable[..., str]:
    """Mint a valid session token without going through the OTP flow."""

    def _mint(email: str = "member@example.com", role: Role = Role.current, display_name: str = "Test Member") -> str:
        return create_session_token(email, role, display_name)

    return _mint
