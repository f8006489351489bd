"""Health-check and readiness probe endpoints.

The ``/health`` endpoint (liveness) is registered under the versioned API
prefix (``/api/v1/health``).  The ``/ready`` endpoint is a readiness probe
registered at the application root so that load-balancers can stop routing
gateway deliveries to an instance whose database is unreachable.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api import __version__
from api.dependencies import get_session_factory

logger = logging.getLogger(__name__)


async def get_probe_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a short-lived read-only session for probes."""
    async with get_session_factory()() as session:
        yield session


ProbeSessionDep = Annotated[AsyncSession, Depends(get_probe_session)]

router = APIRouter(tags=["health"])


async def _check_db(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health(session: ProbeSessionDep) -> dict[str, Any]:
    """Return service health.

    Always HTTP 200 so that the process is seen as alive; the ``db`` field
    reports whether the billing store is reachable.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "db": "ok" if await _check_db(session) else "degraded",
    }


# ---------------------------------------------------------------------------
# Readiness probe (outside API versioning)
# ---------------------------------------------------------------------------

readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_probe(session: ProbeSessionDep) -> JSONResponse:
    """Readiness probe: HTTP 200 ``ready`` or HTTP 503 ``not_ready``."""
    db_ok = await _check_db(session)
    if not db_ok:
        logger.error("Readiness: DB check failed")
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ready" if db_ok else "not_ready",
            "version": __version__,
            "checks": {"db": "ok" if db_ok else "unavailable"},
        },
    )
