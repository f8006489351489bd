"""Middleware components for the reconciliation API."""

from __future__ import annotations

from api.middleware.json_formatter import JSONFormatter
from api.middleware.logging import CorrelationIdFilter, RequestLoggingMiddleware

__all__ = [
    "CorrelationIdFilter",
    "JSONFormatter",
    "RequestLoggingMiddleware",
]
