"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from recon_engine.state.database import create_tables, get_engine, get_session_factory
from recon_engine.state.repository import (
    BusinessRepository,
    InvoiceRepository,
    PayoutRepository,
    ProcessedEventRepository,
)

__all__ = [
    "BusinessRepository",
    "InvoiceRepository",
    "PayoutRepository",
    "ProcessedEventRepository",
    "create_tables",
    "get_engine",
    "get_session_factory",
]
