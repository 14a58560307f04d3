"""
tests/conftest.py -- Shared test fixtures for AuthGate.

This module provides:
  - FakeClock: manually advanced clock shared by the cache, MFA verifier
    and dispatcher so TTL and backoff behaviour is deterministic.
  - RecordingMonitor: in-memory Monitor that records every report.
  - user_store: isolated named shared-memory SQLite UserStore per test.
  - service: a fully wired AuthService over MemoryCache.
  - api_client: TestClient with a patched lifespan wiring test components.

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Any

# CRITICAL: Set DEBUG before any core/auth import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.factory import Components, build_components
from auth.mfa import MfaVerifier
from auth.ratelimit import RateLimiter
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from cache.store import MemoryCache
from core.config import get_settings
from notify.dispatcher import NotificationDispatcher

# A fixed wall-clock instant, aligned to a 30s TOTP step boundary + 5s.
T0 = 1_700_000_015.0

TEST_SECRET_KEY = "k" * 64


class FakeClock:
    """Callable clock advanced explicitly by tests."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMonitor:
    def __init__(self) -> None:
        self.exceptions: list[BaseException] = []
        self.events: list[tuple[str, dict[str, Any]]] = []

    def report_exception(self, exc: BaseException) -> None:
        self.exceptions.append(exc)

    def report_event(self, name: str, details: dict[str, Any]) -> None:
        self.events.append((name, details))

    def event_names(self) -> list[str]:
        return [name for name, _ in self.events]


def _memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(clock=clock)


@pytest.fixture
def monitor() -> RecordingMonitor:
    return RecordingMonitor()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(_memory_db_url("test_auth"))
    yield store
    store.close()


@pytest.fixture
def rate_limiter(cache: MemoryCache) -> RateLimiter:
    return RateLimiter(cache)


@pytest.fixture
def mfa_verifier(cache: MemoryCache, monitor: RecordingMonitor, clock: FakeClock) -> MfaVerifier:
    return MfaVerifier(cache, monitor, clock=clock)


@pytest.fixture
def dispatcher(monitor: RecordingMonitor, clock: FakeClock) -> NotificationDispatcher:
    return NotificationDispatcher(monitor, tries=3, backoff=60, clock=clock)


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET_KEY, expire_seconds=3600)


@pytest.fixture
def service(
    user_store: UserStore,
    cache: MemoryCache,
    rate_limiter: RateLimiter,
    mfa_verifier: MfaVerifier,
    token_issuer: TokenIssuer,
    dispatcher: NotificationDispatcher,
    monitor: RecordingMonitor,
) -> AuthService:
    return AuthService(
        store=user_store,
        cache=cache,
        rate_limiter=rate_limiter,
        mfa=mfa_verifier,
        tokens=token_issuer,
        dispatcher=dispatcher,
        monitor=monitor,
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(components: Components):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so routes use an isolated
    store and cache. The dispatcher worker is not started; tests drain it
    with run_pending() when they care about delivery.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.components = components
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, Components], None, None]:
    """Yield (client, components) for API integration tests.

    Function-scoped so every test starts with empty rate-limit counters.
    """
    from api.main import app

    components = build_components(
        get_settings(),
        store=UserStore(_memory_db_url("test_api")),
        cache=MemoryCache(),
        monitor=RecordingMonitor(),
    )
    app.router.lifespan_context = _patch_lifespan(components)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client, components

    components.close()
