"""
tests/conftest.py -- Shared test fixtures for the Batchmates auth tests.

This module provides:
  - store:           a fresh file-backed SQLite UserStore per test (tmp_path)
  - credentials / roles / gateway: services wired exactly as in production
  - notifier:        RecordingNotifier that keeps reset messages for assertions
  - make_user:       factory for accounts with a given role and status
  - client:          TestClient over the real app with a patched lifespan

Design: each test gets its own database file rather than a shared in-memory
URI. WAL mode and the busy timeout only mean anything on a real file, and
the concurrency tests need several connections writing at once.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import:
get_settings() is cached on first call, DEBUG lets it auto-generate
SECRET_KEY, and 4 rounds keeps bcrypt fast enough for a test suite.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_gateway
from auth.credentials import CredentialStore
from auth.gateway import AuthGateway
from auth.models import User
from auth.notifications import BaseNotifier, ResetPasswordMessage
from auth.roles import RoleResolver
from auth.store import UserStore

PASSWORD = "secret123"


class RecordingNotifier(BaseNotifier):
    """Keeps every reset message instead of delivering it."""

    channel_type = "recording"

    def __init__(self) -> None:
        self.messages: list[ResetPasswordMessage] = []

    def send_reset_link(self, message: ResetPasswordMessage) -> bool:
        self.messages.append(message)
        return True


# ---------------------------------------------------------------------------
# Store and service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture()
def store(db_url: str) -> Generator[UserStore, None, None]:
    user_store = UserStore(db_url=db_url)
    yield user_store
    user_store.close()


@pytest.fixture()
def credentials(store: UserStore) -> CredentialStore:
    return CredentialStore(store)


@pytest.fixture()
def roles(store: UserStore) -> RoleResolver:
    return RoleResolver(store)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def gateway(store: UserStore, notifier: RecordingNotifier) -> AuthGateway:
    return build_gateway(store, notifier)


@pytest.fixture()
def make_user(credentials: CredentialStore, roles: RoleResolver) -> Callable[..., User]:
    """Return a factory: make_user(email, role="donor", status="active", password=PASSWORD)."""

    def _make(email: str, role: str = "donor", status: str = "active", password: str = PASSWORD, name: str = "Test User") -> User:
        user = credentials.create(name, email, password, password, status=status)
        roles.assign_role(user, role)
        return user

    return _make


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, notifier: BaseNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the per-test store and the recording notifier into app.state so
    routes see an isolated database and reset links never leave the process.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.notifier = notifier
        app.state.gateway = build_gateway(user_store, notifier)
        yield

    return test_lifespan


@pytest.fixture()
def client(store: UserStore, notifier: RecordingNotifier) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with an isolated store.

    The limiter keeps counters in process memory; reset it so one test's
    logins do not count against the next.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(store, notifier)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client
    limiter.reset()
