"""Repository classes providing access to the billing store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for
committing.

Every query is scoped by an indexed field and limited; nothing here scans a
whole collection.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from recon_engine.state.tables import (
    BusinessTable,
    InvoiceTable,
    PayoutRecordTable,
    ProcessedEventTable,
)

logger = logging.getLogger(__name__)


# Ledger outcomes that changed nothing; a later delivery or replay of the
# same event may claim it again.
RECLAIMABLE_OUTCOMES: tuple[str, ...] = ("unresolved", "ignored")


def _dialect_insert(session: AsyncSession, table: Any, values: dict[str, Any]) -> Any:
    """Return a PostgreSQL or SQLite ``INSERT`` supporting ``ON CONFLICT``."""
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        return _pg_insert(table).values(**values)

    from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

    return _sqlite_insert(table).values(**values)


async def _dialect_insert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to insert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names for conflict detection.

    Returns
    -------
    The execution result from ``session.execute()``; ``rowcount`` is 0 when
    the row already existed.
    """
    stmt = _dialect_insert(session, table, values).on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# InvoiceRepository
# ---------------------------------------------------------------------------


class InvoiceRepository:
    """Lookups and creation for :class:`InvoiceTable` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, invoice_id: str) -> InvoiceTable | None:
        return await self._session.get(InvoiceTable, invoice_id)

    async def get_by_stripe_id(self, stripe_invoice_id: str) -> InvoiceTable | None:
        stmt = select(InvoiceTable).where(InvoiceTable.stripe_invoice_id == stripe_invoice_id).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_unlinked_by_number(self, invoice_number: str) -> InvoiceTable | None:
        """Return the oldest invoice with *invoice_number* and no gateway id.

        Invoices already linked to a gateway invoice are excluded so that a
        second gateway invoice reusing a number cannot hijack the row.
        """
        stmt = (
            select(InvoiceTable)
            .where(
                InvoiceTable.invoice_number == invoice_number,
                InvoiceTable.stripe_invoice_id.is_(None),
            )
            .order_by(InvoiceTable.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def create(
        self,
        invoice_id: str,
        *,
        business_id: str | None = None,
        invoice_number: str | None = None,
        stripe_invoice_id: str | None = None,
        amount_due: Decimal = Decimal("0.00"),
        currency: str = "eur",
        status: str = "open",
        business_name: str | None = None,
    ) -> InvoiceTable:
        row = InvoiceTable(
            id=invoice_id,
            business_id=business_id,
            invoice_number=invoice_number,
            stripe_invoice_id=stripe_invoice_id,
            amount_due=amount_due,
            currency=currency,
            status=status,
            business_name=business_name,
        )
        self._session.add(row)
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# BusinessRepository
# ---------------------------------------------------------------------------


class BusinessRepository:
    """Lookups and creation for :class:`BusinessTable` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, business_id: str) -> BusinessTable | None:
        return await self._session.get(BusinessTable, business_id)

    async def get_by_subscription_id(self, subscription_id: str) -> BusinessTable | None:
        stmt = select(BusinessTable).where(BusinessTable.subscription_id == subscription_id).limit(1)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def create(
        self,
        business_id: str,
        *,
        company_name: str | None = None,
        brand: str | None = None,
        email: str | None = None,
        contact_email: str | None = None,
        subscription_id: str | None = None,
        subscription_status: str | None = None,
    ) -> BusinessTable:
        row = BusinessTable(
            id=business_id,
            company_name=company_name,
            brand=brand,
            email=email,
            contact_email=contact_email,
            subscription_id=subscription_id,
            subscription_status=subscription_status,
        )
        self._session.add(row)
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# PayoutRepository
# ---------------------------------------------------------------------------


class PayoutRepository:
    """Append-only access to the payout log.  There is no update method."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        *,
        payout_id: str,
        stripe_event_id: str,
        amount: Decimal,
        currency: str,
        status: str,
        arrival_date: datetime | None = None,
        failure_code: str | None = None,
        failure_message: str | None = None,
    ) -> bool:
        """Insert a payout record; return ``False`` if the event was already logged."""
        result = await _dialect_insert_nothing(
            self._session,
            PayoutRecordTable,
            {
                "payout_id": payout_id,
                "stripe_event_id": stripe_event_id,
                "amount": amount,
                "currency": currency,
                "status": status,
                "arrival_date": arrival_date,
                "failure_code": failure_code,
                "failure_message": failure_message,
                "created_at": datetime.now(UTC),
            },
            index_elements=["stripe_event_id"],
        )
        return bool(result.rowcount)

    async def list_for_payout(self, payout_id: str) -> list[PayoutRecordTable]:
        stmt = (
            select(PayoutRecordTable)
            .where(PayoutRecordTable.payout_id == payout_id)
            .order_by(PayoutRecordTable.created_at, PayoutRecordTable.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# ProcessedEventRepository
# ---------------------------------------------------------------------------


class ProcessedEventRepository:
    """The event ledger: one row per gateway event id ever claimed."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def claim(self, event_id: str, event_type: str, received_at: datetime) -> bool:
        """Atomically claim *event_id*.

        Returns ``True`` if this transaction inserted the row or took over
        a row whose recorded outcome is in :data:`RECLAIMABLE_OUTCOMES`, and
        ``False`` if the event is held by an outcome with side effects or by
        a transaction still in flight (outcome not yet recorded).  Under
        concurrent delivery the unique key makes the second claimant wait
        for the first to commit, after which its conflict clause sees the
        committed outcome.
        """
        stmt = _dialect_insert(
            self._session,
            ProcessedEventTable,
            {
                "event_id": event_id,
                "event_type": event_type,
                "received_at": received_at,
                "processed_at": datetime.now(UTC),
            },
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["event_id"],
            set_={
                "event_type": stmt.excluded.event_type,
                "received_at": stmt.excluded.received_at,
                "processed_at": stmt.excluded.processed_at,
                "outcome": None,
            },
            where=ProcessedEventTable.outcome.in_(RECLAIMABLE_OUTCOMES),
        )
        result = await self._session.execute(stmt)
        return bool(result.rowcount)

    async def record_outcome(self, event_id: str, outcome: str) -> None:
        await self._session.execute(
            update(ProcessedEventTable).where(ProcessedEventTable.event_id == event_id).values(outcome=outcome)
        )

    async def get(self, event_id: str) -> ProcessedEventTable | None:
        return await self._session.get(ProcessedEventTable, event_id)
