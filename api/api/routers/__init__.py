"""API router modules for the reconciliation service."""

from __future__ import annotations

from api.routers import health, webhooks

__all__ = [
    "health",
    "webhooks",
]
