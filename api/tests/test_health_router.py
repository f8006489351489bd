"""Tests for the liveness and readiness probes."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from api import __version__
from api.routers.health import get_probe_session


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_ok(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "version": __version__, "db": "ok"}

    @pytest.mark.asyncio
    async def test_ready_ok(self, client: AsyncClient) -> None:
        resp = await client.get("/ready")
        assert resp.status_code == 200
        assert resp.json()["checks"] == {"db": "ok"}


class TestDegraded:
    @pytest.fixture()
    def broken_app(self, app):
        session = AsyncMock()
        session.execute = AsyncMock(side_effect=ConnectionError("db unreachable"))

        async def _broken_session():
            yield session

        app.dependency_overrides[get_probe_session] = _broken_session
        return app

    @pytest.mark.asyncio
    async def test_health_reports_degraded(self, broken_app) -> None:
        async with AsyncClient(transport=ASGITransport(app=broken_app), base_url="http://test") as ac:
            resp = await ac.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["db"] == "degraded"

    @pytest.mark.asyncio
    async def test_ready_returns_503(self, broken_app) -> None:
        async with AsyncClient(transport=ASGITransport(app=broken_app), base_url="http://test") as ac:
            resp = await ac.get("/ready")
        assert resp.status_code == 503
        assert resp.json()["status"] == "not_ready"
