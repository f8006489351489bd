"""Typed representations of gateway events.

Only the fields the engine reads are declared; everything else in the
gateway payload is ignored.  Absent fields fall back to defaults so that a
sparse but well-formed resource never fails decoding.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventKind(str, Enum):
    """Closed set of event kinds the engine reconciles."""

    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    INVOICE_OVERDUE = "invoice.overdue"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    PAYOUT_PAID = "payout.paid"
    PAYOUT_FAILED = "payout.failed"

    @classmethod
    def parse(cls, value: str) -> EventKind | None:
        """Return the matching kind, or ``None`` for an unrecognised type."""
        try:
            return cls(value)
        except ValueError:
            return None


class _Resource(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class GatewayError(_Resource):
    """``last_finalization_error`` / ``last_payment_error`` sub-object."""

    code: str | None = None
    message: str | None = None


class InvoiceResource(_Resource):
    id: str = ""
    number: str | None = None
    amount_due: int = 0
    amount_paid: int = 0
    currency: str = "eur"
    payment_intent: str | None = None
    last_finalization_error: GatewayError | None = None

    @field_validator("payment_intent", mode="before")
    @classmethod
    def _unexpand_payment_intent(cls, v: Any) -> Any:
        # Expanded objects arrive as dicts; only the id is kept.
        if isinstance(v, dict):
            return v.get("id")
        return v


class PaymentIntentResource(_Resource):
    id: str = ""
    amount: int = 0
    currency: str = "eur"
    metadata: dict[str, str] = Field(default_factory=dict)
    last_payment_error: GatewayError | None = None


class SubscriptionItem(_Resource):
    current_period_end: int | None = None


class SubscriptionItems(_Resource):
    data: list[SubscriptionItem] = Field(default_factory=list)


class SubscriptionResource(_Resource):
    id: str = ""
    status: str = ""
    current_period_end: int | None = None
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)

    @property
    def period_end(self) -> int | None:
        """Period end, read from the first item on newer API versions."""
        if self.current_period_end is not None:
            return self.current_period_end
        for item in self.items.data:
            if item.current_period_end is not None:
                return item.current_period_end
        return None


class PayoutResource(_Resource):
    id: str = ""
    amount: int = 0
    currency: str = "eur"
    arrival_date: int | None = None
    failure_code: str | None = None
    failure_message: str | None = None


Resource = Union[InvoiceResource, PaymentIntentResource, SubscriptionResource, PayoutResource]

RESOURCE_TYPES: dict[EventKind, type[_Resource]] = {
    EventKind.INVOICE_PAID: InvoiceResource,
    EventKind.INVOICE_PAYMENT_FAILED: InvoiceResource,
    EventKind.INVOICE_OVERDUE: InvoiceResource,
    EventKind.PAYMENT_INTENT_SUCCEEDED: PaymentIntentResource,
    EventKind.PAYMENT_INTENT_FAILED: PaymentIntentResource,
    EventKind.SUBSCRIPTION_UPDATED: SubscriptionResource,
    EventKind.SUBSCRIPTION_DELETED: SubscriptionResource,
    EventKind.PAYOUT_PAID: PayoutResource,
    EventKind.PAYOUT_FAILED: PayoutResource,
}


class AuthenticatedEvent(BaseModel):
    """A payload whose signature has been verified but not yet parsed."""

    model_config = ConfigDict(frozen=True)

    payload: str
    signed_at: datetime


class TypedEvent(BaseModel):
    """Decoded event envelope.

    ``kind`` is ``None`` for event types the engine does not reconcile;
    ``type`` always carries the raw gateway string.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str
    type: str
    kind: EventKind | None
    resource: Resource | None = None
    created: datetime | None = None
    livemode: bool = False
    received_at: datetime

    @property
    def is_unknown(self) -> bool:
        return self.kind is None
