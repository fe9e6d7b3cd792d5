"""
tests/conftest.py -- Shared test fixtures for Signet.

This module provides:
  - FrozenClock: a controllable clock for SessionIssuer expiry tests
  - registry / sql_registry / json_registry: isolated account registries
  - issuer: a SessionIssuer with a frozen clock
  - api_client: TestClient over the real app with a patched lifespan

Environment must be set before any core/identity import:
  DEBUG=true          -- get_settings() auto-generates SECRET_KEY instead of raising
  BCRYPT_ROUNDS=4     -- bcrypt's minimum cost keeps the suite fast
  BASE_URL            -- the origin redirect sanitization is checked against
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: Set before any core/identity import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("BASE_URL", "https://app.example")
os.environ.setdefault("REGISTRY_BACKEND", "memory")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from identity.registry import InMemoryAccountRegistry, JsonFileAccountRegistry
from identity.sessions import SessionIssuer, get_session_issuer
from identity.store import AccountStore

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> InMemoryAccountRegistry:
    return InMemoryAccountRegistry()


@pytest.fixture
def sql_registry(tmp_path) -> Generator[AccountStore, None, None]:
    """File-backed SQLite store in a temp dir.

    A real file (not a shared-cache :memory: URI) is used so concurrent
    writers get SQLite's busy-wait locking instead of immediate table-lock
    errors.
    """
    store = AccountStore(f"sqlite:///{tmp_path / 'accounts.db'}")
    yield store
    store.close()


@pytest.fixture
def json_registry(tmp_path) -> JsonFileAccountRegistry:
    return JsonFileAccountRegistry(tmp_path / "accounts.json")


@pytest.fixture(params=["memory", "json", "sql"])
def any_registry(request, tmp_path):
    """Each registry backend in turn -- the contract tests run against all three."""
    if request.param == "memory":
        yield InMemoryAccountRegistry()
    elif request.param == "json":
        yield JsonFileAccountRegistry(tmp_path / "accounts.json")
    else:
        store = AccountStore(f"sqlite:///{tmp_path / 'accounts.db'}")
        yield store
        store.close()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def issuer(clock: FrozenClock) -> SessionIssuer:
    return SessionIssuer(TEST_SECRET, ttl_seconds=3600, clock=clock)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(registry: InMemoryAccountRegistry):
    """Return a lifespan that wires the test registry into app.state.

    The OAuth registry is a MagicMock so no provider metadata is fetched;
    tests that exercise the OAuth routes replace it with a fake client.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.registry = registry
        app.state.issuer = get_session_issuer()
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, InMemoryAccountRegistry], None, None]:
    """Yield (client, registry) for API integration tests.

    follow_redirects=False so OAuth tests can assert on Location headers.
    One client per test module; tests use distinct emails to stay independent.
    """
    registry = InMemoryAccountRegistry()
    app.router.lifespan_context = _patch_lifespan(registry)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, registry
