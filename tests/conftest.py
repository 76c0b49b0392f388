"""
tests/conftest.py -- Shared test fixtures for Benefits Portal tests.

This module provides:
  - FakeClock: injectable clock so idle-expiry tests move time explicitly
  - stores: async fixture -- fresh SQLite file with every store wired up,
    for store-level tests (pytest-asyncio)
  - portal: sync fixture -- TestClient over the real ASGI app with a patched
    lifespan, follow_redirects=False, two seeded accounts
  - Portal helpers: login(), csrf_token() so tests drive the real form flow

Design: each test gets its own SQLite file under tmp_path. An in-memory
database would need a single shared connection, which hides the cross-
connection behaviour (locking, atomic upsert) the concurrency tests rely on.

The database, engine and stores are created INSIDE the patched lifespan so
they bind to the TestClient's event loop, not pytest's.

DEBUG and ALLOWED_HOSTS must be set before any project import: get_settings()
is read at import time by auth.tokens and auth.limiter.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Generator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from types import SimpleNamespace

# CRITICAL: set before any project import so get_settings() auto-generates
# SECRET_KEY in dev mode and TrustedHostMiddleware accepts the test host.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from asgi import app
from auth.csrf import CsrfGuard
from auth.limiter import limiter
from auth.sequence import SequenceGenerator
from auth.sessions import SessionManager
from auth.store import UserStore
from core.database import Database
from ledger.store import AllocationLedger

ADMIN_NAME = "admin"
ADMIN_PASSWORD = "Admin1234"
USER_NAME = "alice"
USER_PASSWORD = "Alice1234"

IDLE_SECONDS = 30 * 60


class FakeClock:
    """Callable clock for SessionManager. Starts at a fixed epoch second."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _build_stores(db: Database, clock: FakeClock) -> SimpleNamespace:
    sequence = SequenceGenerator(db)
    users = UserStore(db, sequence)
    return SimpleNamespace(
        db=db,
        sequence=sequence,
        users=users,
        ledger=AllocationLedger(db, users),
        sessions=SessionManager(db, users, idle_seconds=IDLE_SECONDS, clock=clock),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Store-level fixture
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def stores(tmp_path) -> AsyncIterator[SimpleNamespace]:
    """Yield a namespace of live stores backed by a fresh SQLite file."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'stores.db'}")
    await db.create_all()
    try:
        yield _build_stores(db, FakeClock())
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# HTTP fixture
# ---------------------------------------------------------------------------


@dataclass
class Portal:
    """TestClient plus the handles tests need to steer the app."""

    ADMIN = (ADMIN_NAME, ADMIN_PASSWORD)
    USER = (USER_NAME, USER_PASSWORD)

    client: TestClient
    clock: FakeClock
    ids: dict[str, int] = field(default_factory=dict)

    @property
    def state(self):
        return self.client.app.state

    def page(self, path: str) -> dict:
        resp = self.client.get(path)
        assert resp.status_code == 200, resp.text
        return resp.json()

    def csrf_token(self) -> str:
        return self.client.get("/api/v1/auth/csrf").json()["csrf_token"]

    def login(self, user_name: str, password: str, **extra):
        token = self.page("/login")["csrf_token"]
        return self.client.post(
            "/login",
            data={"user_name": user_name, "password": password, "csrf_token": token, **extra},
        )

    def session_cookie(self) -> str | None:
        return self.client.cookies.get("session_id")


def _patch_lifespan(db_url: str, clock: FakeClock, ids: dict[str, int]):
    """Return an async context manager that replaces the real lifespan.

    Seeds one admin and one regular user (with a 30/30/40 allocation). The
    purge_task is a long-sleeping coroutine so shutdown can cancel() it the
    same way the real lifespan does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        db = Database(db_url)
        await db.create_all()
        stores = _build_stores(db, clock)
        app.state.db = db
        app.state.sequence = stores.sequence
        app.state.user_store = stores.users
        app.state.ledger = stores.ledger
        app.state.sessions = stores.sessions
        app.state.csrf = CsrfGuard()

        admin = await stores.users.create_user(ADMIN_NAME, "Ada", "Admin", ADMIN_PASSWORD, is_admin=True)
        alice = await stores.users.create_user(USER_NAME, "Alice", "Liddell", USER_PASSWORD, "alice@example.com")
        await stores.ledger.update(alice.id, 30, 30, 40)
        ids.update(admin=admin.id, alice=alice.id)

        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.purge_task
        await db.close()

    return test_lifespan


@pytest.fixture
def portal(tmp_path) -> Generator[Portal, None, None]:
    """Yield a Portal over the real app with freshly seeded stores.

    follow_redirects=False is essential: tests assert on redirect locations
    (302 to /login, /login?expired=1, landing pages), which are invisible
    once the client follows the redirect.

    The limiter's in-memory windows are global, so they are reset here.
    """
    clock = FakeClock()
    ids: dict[str, int] = {}
    app.router.lifespan_context = _patch_lifespan(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}", clock, ids)
    limiter.reset()

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Portal(client=client, clock=clock, ids=ids)

    limiter.reset()
