"""
tests/conftest.py -- Shared test fixtures for the ClassSite auth tests.

This module provides:
  - make_settings(): debug Settings with a fixed SECRET_KEY and code echoing on
  - store / service: an isolated AuthStore and a fully wired AuthService
  - make_user(): insert a user straight through the store
  - client: TestClient over the real app with a patched lifespan
  - bearer(): Authorization header for a stored user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture gets its own name, so tests never see each other's rows.

The DEBUG env var must be set before any app import so a stray
get_settings() call auto-generates SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any core/api import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_auth_service
from auth.codes import VerificationCodeManager
from auth.models import Role, User
from auth.service import AuthService
from auth.sms import SMSGateway
from auth.store import AuthStore
from auth.tokens import TokenManager, hash_password
from core.config import Settings

TEST_SECRET = "classsite-test-secret-key-0123456789abcdef"
DEFAULT_PASSWORD = "Secret123"

# Rate limits are per IP and every TestClient request comes from "testclient".
limiter.enabled = False


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "expose_verification_codes": True,
        "sms_gateway_url": "",
    }
    values.update(overrides)
    return Settings(**values)


def memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_user(
    store: AuthStore,
    full_name: str = "Test User",
    phone: str | None = "79000000001",
    email: str | None = None,
    role: Role = Role.STUDENT,
    password: str = DEFAULT_PASSWORD,
    is_active: bool = True,
    is_verified: bool = False,
) -> User:
    uid = store.create_user(
        User(
            full_name=full_name,
            phone=phone,
            email=email,
            password_hash=hash_password(password),
            role=role.value,
            is_active=is_active,
            is_verified=is_verified,
        )
    )
    user = store.get_by_id(uid)
    assert user is not None
    return user


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore(memory_db_url("test_auth"))
    yield s
    s.close()


@pytest.fixture
def tokens(settings: Settings, store: AuthStore) -> TokenManager:
    return TokenManager(settings, store)


@pytest.fixture
def service(settings: Settings, store: AuthStore, tokens: TokenManager) -> AuthService:
    return AuthService(settings, store, tokens, VerificationCodeManager(store, SMSGateway(settings)))


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: AuthStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state through the same build_auth_service()
    the real lifespan uses, so routes see the isolated DB and test Settings.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.store = store
        app.state.auth_service = build_auth_service(settings, store)
        yield

    return test_lifespan


@pytest.fixture
def client(settings: Settings) -> Generator[tuple[TestClient, AuthStore], None, None]:
    """Yield (client, store) over the real app with an isolated in-memory store."""
    api_store = AuthStore(memory_db_url("test_api"))
    app.router.lifespan_context = _patch_lifespan(settings, api_store)

    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, api_store

    api_store.close()


@pytest.fixture
def bearer(settings: Settings):
    """Return a function building an Authorization header for a stored user."""

    def _bearer(store: AuthStore, user: User) -> dict[str, str]:
        token = TokenManager(settings, store).issue_access_token(user.id, user.full_name, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _bearer
