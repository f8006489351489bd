"""Shared fixtures for reconciliation engine tests.

Storage-level tests run against a real in-memory SQLite database (via
aiosqlite) so that the same ORM code paths as production are exercised.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from recon_engine.state.database import create_tables, get_session_factory
from recon_engine.state.sqlite_adapter import get_local_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

TEST_WEBHOOK_SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created."""
    engine = get_local_engine(":memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(db_engine)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_envelope() -> Callable[..., dict[str, Any]]:
    """Factory for gateway event envelopes."""

    def _make(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> dict[str, Any]:
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": 1_700_000_000,
            "livemode": False,
            "data": {"object": obj},
        }

    return _make


@pytest.fixture()
def sign() -> Callable[..., str]:
    """Produce a ``Stripe-Signature`` header for a payload."""

    def _sign(payload: str | bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        ts = int(time.time()) if timestamp is None else timestamp
        digest = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    return _sign


@pytest.fixture()
def signed_request(
    make_envelope: Callable[..., dict[str, Any]],
    sign: Callable[..., str],
) -> Callable[..., tuple[bytes, str]]:
    """Build ``(raw_body, signature_header)`` for an event."""

    def _build(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> tuple[bytes, str]:
        body = json.dumps(make_envelope(event_type, obj, event_id)).encode("utf-8")
        return body, sign(body)

    return _build


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_sender() -> AsyncMock:
    """Mail transport double recording ``send_email`` calls."""
    sender = AsyncMock()
    sender.send_email = AsyncMock(return_value=None)
    return sender
