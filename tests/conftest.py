"""
tests/conftest.py -- Shared test fixtures for Quillpress integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory identity + profile DBs and view cache
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: (client, profiles, outbox) for API integration tests
  - login_as: factory that registers a user through the API, optionally
    raises their role, logs in and returns (access_token, subject_id)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be prepared before any auth/core/api import:
  DEBUG=true               get_settings() auto-generates SECRET_KEY
  ALLOWED_HOSTS=["*"]      TestClient sends Host: testserver
  RATE_LIMIT_ENABLED=false the suite logs in far more than 10 times a minute
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set these before any auth/core/api import. get_settings() is
# cached on first call and api.limiter reads it at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.local_provider import LocalIdentityBackend
from auth.roles import Role
from auth.store import ProfileStore
from cache.store import ViewCache

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
TEST_PASSWORD = "correct-horse"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(
    db_suffix: str, outbox: list[tuple[str, str]]
) -> tuple[LocalIdentityBackend, ProfileStore, ViewCache]:
    """Create isolated named shared-memory stores for one test module.

    Args:
        db_suffix: Unique string appended to the DB names so test modules
                   don't share state (e.g. 'api', 'health').
        outbox:    Receives (email, link) for every reset link the identity
                   backend would have emailed.
    """
    identity_url = f"sqlite:///file:test_identity_{db_suffix}?mode=memory&cache=shared&uri=true"
    profile_url = f"sqlite:///file:test_profiles_{db_suffix}?mode=memory&cache=shared&uri=true"
    identity = LocalIdentityBackend(
        db_url=identity_url,
        secret_key=TEST_SECRET,
        deliver_reset=lambda email, link: outbox.append((email, link)),
    )
    profiles = ProfileStore(db_url=profile_url)
    views = ViewCache(":memory:")
    return identity, profiles, views


def _patch_lifespan(identity: LocalIdentityBackend, profiles: ProfileStore, views: ViewCache):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity = identity
        app.state.profile_store = profiles
        app.state.view_cache = views
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, ProfileStore, list[tuple[str, str]]], None, None]:
    """Yield (client, profiles, outbox) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    """
    outbox: list[tuple[str, str]] = []
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    identity, profiles, views = _make_test_stores(suffix, outbox)

    app.router.lifespan_context = _patch_lifespan(identity, profiles, views)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, profiles, outbox

    views.close()
    profiles.close()
    identity.close()


@pytest.fixture(scope="module")
def login_as(api_client) -> Callable[..., tuple[str, str]]:
    """Return login_as(role=None, email=None) -> (access_token, subject_id).

    Registers through POST /auth/register, sets the role directly in the
    profile store (the way an operator would), then logs in. The session
    cookie is dropped so each test picks its identity via Bearer header.
    """
    client, profiles, _ = api_client

    def _login_as(role: Role | None = None, email: str | None = None) -> tuple[str, str]:
        email = email or unique_email((role or Role.AUTHOR).value.lower())
        resp = client.post("/api/v1/auth/register", json={"email": email, "password": TEST_PASSWORD})
        assert resp.status_code == 201, resp.text
        profile = profiles.find_by_email(email)
        assert profile is not None
        if role is not None:
            profiles.update(profile.id, role=role)
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": TEST_PASSWORD})
        assert resp.status_code == 200, resp.text
        token = resp.cookies["access_token"]
        client.cookies.clear()
        return token, profile.id

    return _login_as
