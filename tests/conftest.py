"""
tests/conftest.py -- Shared test fixtures for the WanderLanka auth service.

This module provides:
  - codec / store / manager: unit-level fixtures on a private in-memory DB
  - _make_test_store(): creates an isolated named shared-memory DB for HTTP tests
  - _patch_lifespan(): wires test objects into app.state, bypassing real startup
  - api_client: (client, store) -- TestClient against the real app
  - _reset_rate_limits: autouse; every test starts with empty limiter counters

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any api/core import so
get_settings() auto-generates the signing secrets instead of raising, and so
hashing stays fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set these before any api/core import -- get_settings() is cached
# on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

TEST_ROUNDS = 4
TEST_PASSWORD = "secret123"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def unique_name(prefix: str = "user") -> str:
    """Return a username that is valid and unused across the whole session."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def make_codec(access_ttl: timedelta = timedelta(minutes=15)) -> TokenCodec:
    return TokenCodec(
        access_secret="a" * 48,
        refresh_secret="r" * 48,
        access_ttl=access_ttl,
        refresh_ttl=timedelta(days=7),
        issuer="wanderlanka-auth-service",
        audience="wanderlanka-mobile-app",
    )


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url)


def _patch_lifespan(store: UserStore, codec: TokenCodec):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.token_codec = codec
        app.state.session_manager = SessionManager(store, codec, bcrypt_rounds=TEST_ROUNDS)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def codec() -> TokenCodec:
    return make_codec()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def manager(store: UserStore, codec: TokenCodec) -> SessionManager:
    return SessionManager(store, codec, bcrypt_rounds=TEST_ROUNDS)


# ---------------------------------------------------------------------------
# HTTP fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, middleware and exception handlers but use
    an isolated in-memory store.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    codec = TokenCodec.from_settings(get_settings())

    app.router.lifespan_context = _patch_lifespan(store, codec)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store

    store.close()


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Every test starts with empty rate-limit counters."""
    limiter.reset()
