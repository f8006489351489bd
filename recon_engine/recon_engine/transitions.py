"""State transitions applied to resolved records, one per event kind.

Every method mutates ORM rows in the caller's session and flushes; none of
them commits.  Assignments are change-detected so that re-applying a
settlement leaves the row byte-identical, ``updated_at`` included.  A
failure stamps ``failed_at`` on each application; redeliveries of the same
event are absorbed by the event ledger before they get here.

A ``paid`` invoice is terminal for failure-type events: a late
``payment_failed`` or ``overdue`` delivered after payment is reported as
:attr:`Outcome.STALE` and changes nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from recon_engine.errors import StorageError
from recon_engine.events.models import (
    InvoiceResource,
    PaymentIntentResource,
    PayoutResource,
    SubscriptionResource,
)
from recon_engine.money import to_major
from recon_engine.state.repository import PayoutRepository
from recon_engine.state.tables import (
    SUBSCRIPTION_CANCELLED,
    BusinessTable,
    InvoiceStatus,
    InvoiceTable,
    PayoutStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_INVOICE_FAILURE_REASON = "payment declined"
DEFAULT_INTENT_FAILURE_REASON = "payment failed"


class Outcome(str, Enum):
    """How an event was disposed of.  Recorded in the event ledger."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNRESOLVED = "unresolved"
    STALE = "stale"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _from_epoch(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def _same(current: Any, new: Any) -> bool:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if isinstance(current, datetime) and isinstance(new, datetime):
        if current.tzinfo is None:
            current = current.replace(tzinfo=UTC)
        if new.tzinfo is None:
            new = new.replace(tzinfo=UTC)
    return current == new


def _assign(row: Any, **values: Any) -> bool:
    """Set each attribute that differs; return whether anything changed."""
    changed = False
    for attr, value in values.items():
        if not _same(getattr(row, attr), value):
            setattr(row, attr, value)
            changed = True
    return changed


class TransitionApplier:
    """Applies event effects to invoices, businesses and the payout log.

    Parameters
    ----------
    session:
        The unit-of-work session.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session = session
        self._payouts = PayoutRepository(session)
        self._clock = clock

    async def _flush(self, row: Any, changed: bool) -> Outcome:
        if changed:
            row.updated_at = self._clock()
        try:
            await self._session.flush()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write {type(row).__name__}: {exc}") from exc
        return Outcome.APPLIED

    def _link(self, invoice: InvoiceTable, gateway_invoice_id: str) -> bool:
        # First contact: an invoice found by number learns its gateway id.
        if invoice.stripe_invoice_id is None and gateway_invoice_id:
            invoice.stripe_invoice_id = gateway_invoice_id
            logger.info("Linked invoice %s to gateway invoice %s", invoice.id, gateway_invoice_id)
            return True
        return False

    def _is_paid(self, invoice: InvoiceTable, event_label: str) -> bool:
        if invoice.status == InvoiceStatus.PAID.value:
            logger.info("Ignoring %s for already paid invoice %s", event_label, invoice.id)
            return True
        return False

    # ------------------------------------------------------------------
    # Invoice events
    # ------------------------------------------------------------------

    async def mark_invoice_paid(self, invoice: InvoiceTable, resource: InvoiceResource) -> Outcome:
        changed = self._link(invoice, resource.id)
        changed |= self._settle(
            invoice,
            amount=to_major(resource.amount_paid, resource.currency),
            payment_intent_id=resource.payment_intent,
        )
        return await self._flush(invoice, changed)

    async def mark_invoice_failed(self, invoice: InvoiceTable, resource: InvoiceResource) -> Outcome:
        if self._is_paid(invoice, "invoice.payment_failed"):
            return Outcome.STALE
        reason = None
        if resource.last_finalization_error is not None:
            reason = resource.last_finalization_error.message
        changed = self._link(invoice, resource.id)
        changed |= self._fail(invoice, reason or DEFAULT_INVOICE_FAILURE_REASON)
        return await self._flush(invoice, changed)

    async def mark_invoice_overdue(self, invoice: InvoiceTable, resource: InvoiceResource) -> Outcome:
        if self._is_paid(invoice, "invoice.overdue"):
            return Outcome.STALE
        changed = self._link(invoice, resource.id)
        changed |= _assign(invoice, status=InvoiceStatus.OVERDUE.value)
        return await self._flush(invoice, changed)

    # ------------------------------------------------------------------
    # Payment intent events
    # ------------------------------------------------------------------

    async def mark_intent_succeeded(self, invoice: InvoiceTable, resource: PaymentIntentResource) -> Outcome:
        changed = self._settle(
            invoice,
            amount=to_major(resource.amount, resource.currency),
            payment_intent_id=resource.id or None,
        )
        return await self._flush(invoice, changed)

    async def mark_intent_failed(self, invoice: InvoiceTable, resource: PaymentIntentResource) -> Outcome:
        if self._is_paid(invoice, "payment_intent.payment_failed"):
            return Outcome.STALE
        reason = None
        if resource.last_payment_error is not None:
            reason = resource.last_payment_error.message
        changed = self._fail(invoice, reason or DEFAULT_INTENT_FAILURE_REASON)
        if resource.id:
            changed |= _assign(invoice, stripe_payment_intent_id=resource.id)
        return await self._flush(invoice, changed)

    def _settle(self, invoice: InvoiceTable, *, amount: Any, payment_intent_id: str | None) -> bool:
        values: dict[str, Any] = {
            "status": InvoiceStatus.PAID.value,
            "paid_amount": amount,
            "failed_at": None,
            "failure_reason": None,
        }
        if invoice.paid_at is None:
            values["paid_at"] = self._clock()
        if payment_intent_id:
            values["stripe_payment_intent_id"] = payment_intent_id
        return _assign(invoice, **values)

    def _fail(self, invoice: InvoiceTable, reason: str) -> bool:
        return _assign(
            invoice,
            status=InvoiceStatus.FAILED.value,
            failure_reason=reason,
            failed_at=self._clock(),
            paid_at=None,
        )

    # ------------------------------------------------------------------
    # Subscription events
    # ------------------------------------------------------------------

    async def update_subscription(self, business: BusinessTable, resource: SubscriptionResource) -> Outcome:
        values: dict[str, Any] = {"subscription_status": resource.status}
        period_end = _from_epoch(resource.period_end)
        if period_end is not None:
            values["current_period_end"] = period_end
        changed = _assign(business, **values)
        return await self._flush(business, changed)

    async def cancel_subscription(self, business: BusinessTable) -> Outcome:
        changed = _assign(
            business,
            subscription_status=SUBSCRIPTION_CANCELLED,
            subscription_id=None,
        )
        return await self._flush(business, changed)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    async def record_payout(
        self,
        event_id: str,
        resource: PayoutResource,
        status: PayoutStatus,
    ) -> Outcome:
        """Append a payout record.  A repeated *event_id* is a no-op."""
        try:
            inserted = await self._payouts.append(
                payout_id=resource.id,
                stripe_event_id=event_id,
                amount=to_major(resource.amount, resource.currency),
                currency=resource.currency,
                status=status.value,
                arrival_date=_from_epoch(resource.arrival_date),
                failure_code=resource.failure_code,
                failure_message=resource.failure_message,
            )
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to append payout record: {exc}") from exc
        if not inserted:
            logger.info("Payout record for event %s already exists", event_id)
            return Outcome.DUPLICATE
        return Outcome.APPLIED
