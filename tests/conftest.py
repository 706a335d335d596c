"""
tests/conftest.py -- Shared test fixtures for the authgate suite.

This module provides:
  - make_module(): an isolated AuthModule on a named shared-memory SQLite DB
  - FakeClock: a controllable clock for session timestamp assertions
  - module / hasher: function-scoped fixtures for unit tests
  - api_client: TestClient wired to an isolated module, with an admin user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers and dependencies in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment variables must be set before any api/ or core/ import so that
get_settings() sees test values (low bcrypt cost, fixed secret, permissive
host list, effectively unlimited rate limit).
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012345678")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User, UserRole
from auth.module import AuthModule
from auth.passwords import PasswordHasher
from auth.tokens import TokenConfig

ACCESS_SECRET = os.environ["JWT_SECRET"]
REFRESH_SECRET = os.environ["JWT_REFRESH_SECRET"]

ADMIN_EMAIL = "admin@test.com"
ADMIN_PASSWORD = "adminpass123"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def shared_memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_module(prefix: str = "auth", refresh_enabled: bool = True) -> AuthModule:
    """Build an AuthModule on its own shared-memory DB with the minimum bcrypt cost."""
    return AuthModule.build(
        db_url=shared_memory_url(prefix),
        token_config=TokenConfig(
            secret=ACCESS_SECRET,
            expires_in="1h",
            refresh_secret=REFRESH_SECRET,
            refresh_expires_in="7d",
        ),
        refresh_enabled=refresh_enabled,
        password_rounds=4,
    )


@dataclass
class FakeClock:
    """Callable clock anchored at real time, advanced explicitly by tests.

    Anchored at real "now" because python-jose validates exp against the
    wall clock; offsets stay well below the one-hour access token lifetime.
    """

    now: datetime

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(now=datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def module() -> Generator[AuthModule, None, None]:
    m = make_module("unit")
    yield m
    m.close()


@pytest.fixture
def access_only_module() -> Generator[AuthModule, None, None]:
    m = make_module("unit_access", refresh_enabled=False)
    yield m
    m.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(module: AuthModule):
    """Return a lifespan that wires a pre-built module into app.state.

    The sweep task is a long-sleeping coroutine so shutdown can cancel a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = module
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    module: AuthModule
    admin_id: str

    def bearer(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def sign_in(self, email: str, password: str) -> dict:
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["result"]

    def create_user(self, email: str, password: str, role: UserRole = UserRole.user) -> str:
        safe = self.module.user_store.create(
            User(
                name=email.split("@")[0],
                email=email,
                password=self.module.auth_service.hasher.hash(password),
                role=role,
            )
        )
        return safe.id


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers against an isolated in-memory store. An admin
    user (ADMIN_EMAIL / ADMIN_PASSWORD) exists before the client starts.
    """
    module = make_module("api")
    admin = module.user_store.create(
        User(
            name="admin",
            email=ADMIN_EMAIL,
            password=module.auth_service.hasher.hash(ADMIN_PASSWORD),
            role=UserRole.admin,
        )
    )

    app.router.lifespan_context = _patch_lifespan(module)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, module=module, admin_id=admin.id)

    module.close()
