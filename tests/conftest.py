"""
tests/conftest.py -- Shared test fixtures for Auth² unit and integration tests.

This module provides:
  - store: a fresh AccountStore per test (isolated named in-memory DB)
  - gateway: a recording LogGateway
  - make_account: factory that creates accounts with any role/status
  - api_client: TestClient wired to an isolated store via a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be set before any auth/core import: get_settings() is
cached on first call and auth.tokens reads it at module load.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from itertools import count

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver.
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "20/minute")
os.environ.setdefault("SEND_MESSAGES", "false")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.accounts import bootstrap_account
from auth.messaging import LogGateway
from auth.models import Account, AccountProfile, AccountStatus, Role
from auth.store import AccountStore
from auth.tokens import create_access_token
from auth.transactions import unit_of_work

DEFAULT_PASSWORD = "correct-horse-battery"

_serial = count(1)


def memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """The limiter is a process-wide singleton; start every test with empty counters."""
    limiter.reset()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore(memory_db_url("test_store"))
    yield s
    s.close()


@pytest.fixture
def gateway() -> LogGateway:
    return LogGateway()


def _new_profile(**overrides) -> AccountProfile:
    """Unique profile per call so tests never collide on email/username/phone."""
    n = next(_serial)
    fields = {
        "first_name": "Test",
        "last_name": f"User{n}",
        "email": f"user{n}@example.com",
        "username": f"user{n}",
        "phone": f"206555{n:04d}",
    }
    fields.update(overrides)
    return AccountProfile(**fields)


def create_account(
    store: AccountStore,
    role: Role = Role.USER,
    status: AccountStatus = AccountStatus.ACTIVE,
    password: str = DEFAULT_PASSWORD,
    email_verified: bool = False,
    phone_verified: bool = False,
    **profile,
) -> Account:
    account = bootstrap_account(store, _new_profile(**profile), password, role)
    changes = {}
    if status is not AccountStatus.ACTIVE:
        changes["status"] = status
    if email_verified:
        changes["email_verified"] = True
    if phone_verified:
        changes["phone_verified"] = True
    with unit_of_work(store.engine) as conn:
        if changes:
            store.update_account(conn, account.id, **changes)
        return store.get_account(conn, account.id)


@pytest.fixture
def make_account(store: AccountStore):
    """Factory: make_account(role=Role.ADMIN, status=AccountStatus.PENDING, ...)."""

    def _make(**kwargs) -> Account:
        return create_account(store, **kwargs)

    return _make


def bearer(account: Account) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(account)}"}


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, gateway: LogGateway):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see
    the isolated test DB and a recording gateway.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.gateway = gateway
        yield

    return test_lifespan


@pytest.fixture
def api_client(store: AccountStore, gateway: LogGateway) -> Generator[TestClient, None, None]:
    """TestClient over the real app, backed by this test's store and gateway."""
    app.router.lifespan_context = _patch_lifespan(store, gateway)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.fixture
def auth_header():
    """Factory: auth_header(account) -> {"Authorization": "Bearer ..."}."""
    return bearer


@pytest.fixture
def password() -> str:
    """Password every make_account() account is created with."""
    return DEFAULT_PASSWORD


@pytest.fixture
def new_profile():
    """Factory: new_profile(email=...) -> AccountProfile with unique defaults."""
    return _new_profile
