"""FastAPI dependency injection for settings, the database and the reconciler.

Everything stateful (engine pool, mail client, gateway client) is built
once in the application lifespan and handed to the reconciler; request
handlers only ever receive it through :data:`ReconcilerDep`.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends
from recon_engine.engine import ReconciliationEngine
from recon_engine.gateway import StripeGateway
from recon_engine.notifications import HttpEmailSender, PaymentFailureNotifier
from recon_engine.retry import RetryConfig
from recon_engine.state.database import get_engine
from recon_engine.state.database import get_session_factory as _build_session_factory
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from api.config import APISettings, load_api_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        statement_timeout_ms=settings.database_statement_timeout_ms,
    )
    _session_factory = _build_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

_reconciler: ReconciliationEngine | None = None
_email_sender: HttpEmailSender | None = None


def build_reconciler(
    settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
) -> tuple[ReconciliationEngine, HttpEmailSender]:
    """Wire a :class:`ReconciliationEngine` from *settings*.

    Returns the engine and the mail transport it owns, so the caller can
    close the transport on shutdown.
    """
    api_key = settings.email_service_api_key.get_secret_value() or None
    sender = HttpEmailSender(
        settings.email_service_url,
        api_key=api_key,
        timeout=settings.email_timeout_seconds,
    )
    notifier = PaymentFailureNotifier(
        sender,
        settings.ops_email,
        retry_window_hours=settings.payment_retry_window_hours,
    )
    reconciler = ReconciliationEngine(
        session_factory,
        settings.stripe_webhook_secret.get_secret_value(),
        notifier=notifier,
        gateway=StripeGateway(settings.stripe_secret_key.get_secret_value()),
        tolerance_seconds=settings.webhook_tolerance_seconds,
        intent_metadata_key=settings.intent_invoice_metadata_key,
        storage_retry=RetryConfig(max_retries=settings.storage_retries),
    )
    return reconciler, sender


def init_reconciler(settings: APISettings) -> ReconciliationEngine:
    """Create and cache the global reconciler (call after :func:`init_engine`)."""
    global _reconciler, _email_sender  # noqa: PLW0603
    _reconciler, _email_sender = build_reconciler(settings, get_session_factory())
    return _reconciler


async def dispose_reconciler() -> None:
    """Close the reconciler's mail transport (call during shutdown)."""
    global _reconciler, _email_sender  # noqa: PLW0603
    if _email_sender is not None:
        await _email_sender.close()
    _reconciler = None
    _email_sender = None


def get_reconciler() -> ReconciliationEngine:
    """Return the global reconciler."""
    if _reconciler is None:
        raise RuntimeError(
            "Reconciler has not been initialised. Ensure init_reconciler() is called during application startup."
        )
    return _reconciler


ReconcilerDep = Annotated[ReconciliationEngine, Depends(get_reconciler)]
