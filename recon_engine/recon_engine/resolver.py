"""Locate the internal record an event refers to.

Every strategy is a single field-scoped query returning at most one row.
A miss returns ``None``; callers acknowledge and log it rather than retry,
because a record that does not exist now will not exist on redelivery.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from recon_engine.errors import StorageError
from recon_engine.state.repository import BusinessRepository, InvoiceRepository
from recon_engine.state.tables import BusinessTable, InvoiceTable

logger = logging.getLogger(__name__)

UNKNOWN_CONTACT_NAME = "Unknown"
DEFAULT_INTENT_METADATA_KEY = "invoiceId"


@dataclass(frozen=True)
class BillingContact:
    """Who to tell about an invoice.  ``email`` is ``None`` when unknown."""

    name: str
    email: str | None


class EntityResolver:
    """Resolution strategies bound to one session.

    Parameters
    ----------
    session:
        The unit-of-work session; lookups see its uncommitted writes.
    intent_metadata_key:
        Metadata key on a payment intent that carries the internal
        invoice id.
    """

    def __init__(
        self,
        session: AsyncSession,
        intent_metadata_key: str = DEFAULT_INTENT_METADATA_KEY,
    ) -> None:
        self._invoices = InvoiceRepository(session)
        self._businesses = BusinessRepository(session)
        self._intent_metadata_key = intent_metadata_key

    # -- invoices -----------------------------------------------------------

    async def resolve_invoice(
        self,
        gateway_invoice_id: str | None,
        gateway_invoice_number: str | None,
    ) -> InvoiceTable | None:
        """Resolve by gateway id, falling back to the invoice number.

        The fallback covers records created before the gateway invoice was
        linked; it only matches invoices that are still unlinked.
        """
        try:
            if gateway_invoice_id:
                invoice = await self._invoices.get_by_stripe_id(gateway_invoice_id)
                if invoice is not None:
                    return invoice
            if gateway_invoice_number:
                invoice = await self._invoices.get_unlinked_by_number(gateway_invoice_number)
                if invoice is not None:
                    logger.info(
                        "Invoice %s resolved by number %s",
                        invoice.id,
                        gateway_invoice_number,
                    )
                    return invoice
        except SQLAlchemyError as exc:
            raise StorageError(f"Invoice lookup failed: {exc}") from exc

        logger.warning(
            "No invoice for gateway id=%s number=%s",
            gateway_invoice_id,
            gateway_invoice_number,
        )
        return None

    async def resolve_invoice_by_intent_metadata(self, metadata: Mapping[str, str]) -> InvoiceTable | None:
        invoice_id = metadata.get(self._intent_metadata_key)
        if not invoice_id:
            logger.warning("Payment intent carries no %s metadata", self._intent_metadata_key)
            return None
        try:
            invoice = await self._invoices.get(invoice_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Invoice lookup failed: {exc}") from exc
        if invoice is None:
            logger.warning("No invoice with id=%s from payment intent metadata", invoice_id)
        return invoice

    # -- businesses ---------------------------------------------------------

    async def resolve_business(self, business_id: str | None) -> BusinessTable | None:
        if not business_id:
            return None
        try:
            return await self._businesses.get(business_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Business lookup failed: {exc}") from exc

    async def resolve_business_by_subscription_id(self, subscription_id: str | None) -> BusinessTable | None:
        if not subscription_id:
            logger.warning("Subscription event without a subscription id")
            return None
        try:
            business = await self._businesses.get_by_subscription_id(subscription_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Business lookup failed: {exc}") from exc
        if business is None:
            logger.warning("No business with subscription_id=%s", subscription_id)
        return business

    async def resolve_billing_contact(self, invoice: InvoiceTable) -> BillingContact:
        """Name and email of the business that owns *invoice*.

        Name falls back from company name to brand to the invoice's own
        snapshot, then to ``"Unknown"``.  A missing business never raises.
        """
        business = await self.resolve_business(invoice.business_id)
        if business is None:
            return BillingContact(
                name=invoice.business_name or UNKNOWN_CONTACT_NAME,
                email=None,
            )
        name = business.company_name or business.brand or invoice.business_name or UNKNOWN_CONTACT_NAME
        email = business.email or business.contact_email or None
        return BillingContact(name=name, email=email)
