"""Shared fixtures for reconciliation API tests.

Provides a real reconciler over in-memory SQLite, a mock reconciler for
error-mapping tests, a signing helper, and an async httpx client bound to
the application through ``ASGITransport``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# The gateway secrets are required settings; provide deterministic values
# BEFORE importing application modules, since ``api.main`` builds the app
# at import time.
TEST_WEBHOOK_SECRET = "whsec_api_test_secret"
os.environ.setdefault("API_STRIPE_SECRET_KEY", "sk_test_api")
os.environ.setdefault("API_STRIPE_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
os.environ.setdefault("API_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from recon_engine.engine import ReconciliationEngine
from recon_engine.state.database import create_tables, get_session_factory
from recon_engine.state.sqlite_adapter import get_local_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from api.config import APISettings
from api.dependencies import get_reconciler, get_settings
from api.main import create_app
from api.routers.health import get_probe_session

# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        database_url="sqlite+aiosqlite:///:memory:",
        platform_env="dev",
        cors_origins=["http://localhost:3000"],
        stripe_secret_key="sk_test_api",
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        ops_email="ops@platform.test",
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = get_local_engine(":memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(db_engine)


# ---------------------------------------------------------------------------
# Reconcilers
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_sender() -> AsyncMock:
    sender = AsyncMock()
    sender.send_email = AsyncMock(return_value=None)
    return sender


@pytest.fixture()
def reconciler(session_factory: async_sessionmaker[AsyncSession]) -> ReconciliationEngine:
    """A real reconciler over the in-memory store, without notifications."""
    return ReconciliationEngine(session_factory, TEST_WEBHOOK_SECRET)


@pytest.fixture()
def mock_reconciler() -> AsyncMock:
    """A reconciler double; set ``handle.side_effect`` per test."""
    engine = AsyncMock(spec=ReconciliationEngine)
    engine.handle = AsyncMock()
    return engine


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


@pytest.fixture()
def signed_event() -> Callable[..., tuple[bytes, dict[str, str]]]:
    """Build ``(raw_body, headers)`` for a signed event delivery."""

    def _build(
        event_type: str,
        obj: dict[str, Any],
        event_id: str = "evt_1",
        secret: str = TEST_WEBHOOK_SECRET,
    ) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(
            {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
        ).encode("utf-8")
        ts = int(time.time())
        digest = hmac.new(secret.encode("utf-8"), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
        return body, {"Stripe-Signature": f"t={ts},v1={digest}", "Content-Type": "application/json"}

    return _build


# ---------------------------------------------------------------------------
# FastAPI TestClient (async httpx)
# ---------------------------------------------------------------------------


def _build_app(
    settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
    reconciler: Any,
):
    application = create_app()

    async def _override_probe_session():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_reconciler] = lambda: reconciler
    application.dependency_overrides[get_probe_session] = _override_probe_session
    return application


@pytest.fixture()
def app(
    test_settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
    reconciler: ReconciliationEngine,
):
    """App wired to the real in-memory reconciler."""
    return _build_app(test_settings, session_factory, reconciler)


@pytest.fixture()
def mock_app(
    test_settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
    mock_reconciler: AsyncMock,
):
    """App wired to :func:`mock_reconciler`."""
    return _build_app(test_settings, session_factory, mock_reconciler)


@pytest_asyncio.fixture()
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Yield an async httpx client bound to the test app.

    Uses ASGITransport so requests go directly to the ASGI app without
    opening a real TCP socket.  The lifespan is not run; every stateful
    dependency is overridden instead.
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def mock_client(mock_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=mock_app), base_url="http://test") as ac:
        yield ac
