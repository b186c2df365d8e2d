"""
tests/conftest.py -- Shared test fixtures for Gatehouse unit and integration tests.

This module provides:
  - FrozenClock: a controllable clock injected into Database, so lockout and
    session expiry can be tested without sleeping
  - db / credentials / sessions / limiter / service: isolated in-memory stack
    for unit tests (function-scoped)
  - make_test_service(): builds a full AuthService on a named shared-memory DB
  - patch_lifespan(): wires a test service into app.state, bypassing real startup
  - api_client: TestClient over the real app with generous rate limits
  - limited_api_client: same, with small rate limits for 429 tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any auth module import:
get_settings() auto-generates SECRET_KEY in dev mode instead of raising, and
auth/tokens.py computes its timing-equalization hash at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.credentials import CredentialStore
from auth.db import Database
from auth.ratelimit import RateLimiter
from auth.service import AuthService
from auth.sessions import SessionManager
from core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_test_service(
    db_url: str,
    clock: FrozenClock | None = None,
    settings: Settings | None = None,
) -> AuthService:
    """Build the full auth stack on one database, the way the lifespan does."""
    settings = settings or get_settings()
    db = Database(db_url, timeout=settings.store_timeout_seconds, clock=clock or FrozenClock())
    credentials = CredentialStore(
        db,
        max_attempts=settings.max_login_attempts,
        lockout=timedelta(seconds=settings.lockout_seconds),
    )
    return AuthService(db, credentials, SessionManager(db), RateLimiter("memory://"), settings)


def shared_memory_url(name: str) -> str:
    return f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true"


def patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service and its collaborators into app.state so
    TestClient routes see an isolated database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db = service.db
        app.state.credential_store = service.credentials
        app.state.session_manager = service.sessions
        app.state.rate_limiter = service.limiter
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def relaxed_settings(**overrides) -> Settings:
    """Test settings with rate limits high enough not to interfere."""
    update = {"login_rate_limit": 1000, "register_rate_limit": 1000}
    update.update(overrides)
    return get_settings().model_copy(update=update)


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh in-memory stack per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def db(clock: FrozenClock) -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:", clock=clock)
    yield database
    database.close()


@pytest.fixture
def credentials(db: Database) -> CredentialStore:
    return CredentialStore(db, max_attempts=5, lockout=timedelta(minutes=30))


@pytest.fixture
def sessions(db: Database) -> SessionManager:
    return SessionManager(db)


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter("memory://")


@pytest.fixture
def service(db: Database, credentials: CredentialStore, sessions: SessionManager, limiter: RateLimiter) -> AuthService:
    return AuthService(db, credentials, sessions, limiter, get_settings())


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, dependencies and exception handlers against an
    isolated in-memory database. The DB name is derived from the test module
    so modules never share state.
    """
    name = request.module.__name__.rsplit(".", 1)[-1]
    service = make_test_service(shared_memory_url(name), settings=relaxed_settings())
    app.router.lifespan_context = patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    service.db.close()


@pytest.fixture(scope="module")
def limited_api_client(request) -> Generator[tuple[TestClient, AuthService], None, None]:
    """Like api_client, but with small rate limits (login 3, register 2)."""
    name = request.module.__name__.rsplit(".", 1)[-1]
    settings = relaxed_settings(login_rate_limit=3, register_rate_limit=2)
    service = make_test_service(shared_memory_url(f"{name}_limited"), settings=settings)
    app.router.lifespan_context = patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    service.db.close()
