"""
tests/conftest.py -- Shared test fixtures for the auth service tests.

This module provides:
  - settings: a valid Settings with a fixed 40-char key and bcrypt cost 4
  - make_settings: factory for variants (verification on, session-bound CSRF)
  - store / engine: an AuthStore on a temp-file SQLite DB and an AuthEngine on it
  - clock: a controllable clock injected into the engine
  - api_client: TestClient over create_app() with an isolated in-memory store

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because the engine runs store calls in worker threads. Plain :memory: DBs are
per-connection and would present a blank schema to each thread. The named URI
format (file:name?mode=memory&cache=shared&uri=true) shares one in-memory
instance across all connections in the same process.

Engine and store tests use a temp file instead: shared-cache memory DBs take
table-level locks, and the concurrency tests write from two threads at once.

bcrypt cost 4 is the library minimum; cost 12 would make the suite take
minutes.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.engine import AuthEngine
from auth.passwords import PasswordHasher
from auth.store import AuthStore
from core.config import Settings, load_settings

TEST_SECRET = "test-secret-key-0123456789-abcdefghijkl"


class FakeClock:
    """Callable clock for AuthEngine(clock=...). Starts at a fixed instant."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _memory_url(db_suffix: str) -> str:
    return f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Return a factory: make_settings(require_email_verification=True, ...)."""

    def _make(**overrides) -> Settings:
        values = {
            "debug": False,
            "secret_key": TEST_SECRET,
            "bcrypt_cost": 4,
            "hash_workers": 2,
            "token_sweep_interval_seconds": 0,
            "operation_timeout_seconds": 5.0,
        }
        values.update(overrides)
        return load_settings(**values)

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


# ---------------------------------------------------------------------------
# Store and engine
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path) -> Generator[AuthStore, None, None]:
    auth_store = AuthStore(db_url=f"sqlite:///{tmp_path / 'auth.db'}")
    yield auth_store
    auth_store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_engine(store: AuthStore, clock: FakeClock) -> Generator[Callable[..., AuthEngine], None, None]:
    """Return a factory that builds engines over the shared store and clock."""
    hashers: list[PasswordHasher] = []

    def _make(settings: Settings, **kwargs) -> AuthEngine:
        hasher = PasswordHasher(cost=settings.bcrypt_cost, max_workers=settings.hash_workers)
        hashers.append(hasher)
        kwargs.setdefault("clock", clock)
        return AuthEngine(store, store, hasher, settings, **kwargs)

    yield _make
    for hasher in hashers:
        hasher.close()


@pytest.fixture
def engine(make_engine: Callable[..., AuthEngine], settings: Settings) -> AuthEngine:
    return make_engine(settings)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
def make_client() -> Generator[Callable[..., tuple[TestClient, AuthStore]], None, None]:
    """Return a factory that starts a TestClient for the given Settings.

    Each call gets its own in-memory DB, so cookie jars and rows never leak
    between tests. The lifespan runs for real; only the store is injected.
    """
    opened: list[tuple[TestClient, AuthStore]] = []

    def _make(settings: Settings) -> tuple[TestClient, AuthStore]:
        auth_store = AuthStore(db_url=_memory_url(uuid.uuid4().hex))
        client = TestClient(create_app(settings, store=auth_store), raise_server_exceptions=True)
        client.__enter__()
        opened.append((client, auth_store))
        return client, auth_store

    yield _make
    for client, auth_store in opened:
        client.__exit__(None, None, None)
        auth_store.close()


@pytest.fixture
def api_client(make_client, settings: Settings) -> tuple[TestClient, AuthStore]:
    """Yield (client, store) for API integration tests with default settings."""
    return make_client(settings)
