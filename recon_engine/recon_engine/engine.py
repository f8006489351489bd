"""Top-level reconciliation: authenticate, decode, route, apply, notify.

Each event is one unit of work.  Inside a single transaction the event id
is claimed in the ledger, the target record is resolved and the
transition applied, and the outcome recorded.  Notifications go out only
after that transaction commits, so a rolled-back transition never sends
mail and a failed send never rolls back a transition.

The engine holds no mutable state between events; concurrent deliveries of
the same event are serialised by the ledger's primary key.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recon_engine.errors import ConfigurationError, StorageError
from recon_engine.events.authenticator import DEFAULT_TOLERANCE_SECONDS, authenticate
from recon_engine.events.decoder import decode, decode_envelope
from recon_engine.events.models import (
    EventKind,
    InvoiceResource,
    PaymentIntentResource,
    PayoutResource,
    SubscriptionResource,
    TypedEvent,
)
from recon_engine.gateway import StripeGateway
from recon_engine.money import to_major
from recon_engine.notifications.dispatcher import PaymentFailureNotifier
from recon_engine.resolver import DEFAULT_INTENT_METADATA_KEY, EntityResolver
from recon_engine.retry import RetryConfig, async_retry_with_backoff, is_transient_db_error
from recon_engine.state.repository import ProcessedEventRepository
from recon_engine.state.tables import PayoutStatus
from recon_engine.transitions import Outcome, TransitionApplier

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ReconciliationResult:
    """What happened to one event."""

    event_id: str
    event_type: str
    outcome: Outcome


@dataclass(frozen=True)
class FailureNotice:
    """Payment failure details captured in-transaction, sent after commit."""

    invoice_number: str
    business_name: str
    business_email: str | None
    amount: Decimal
    reason: str
    currency: str


@dataclass
class _UnitOfWork:
    resolver: EntityResolver
    applier: TransitionApplier


_Handler = Callable[[_UnitOfWork, TypedEvent], Awaitable[tuple[Outcome, FailureNotice | None]]]


class ReconciliationEngine:
    """Reconcile gateway events against the billing store.

    Parameters
    ----------
    session_factory:
        Factory for the unit-of-work sessions.
    webhook_secret:
        Endpoint signing secret.  Blank secrets are rejected.
    notifier:
        Payment failure notifier.  When ``None`` failures are applied but
        nobody is told.
    gateway:
        Gateway API client; required only for :meth:`replay`.
    tolerance_seconds:
        Signature timestamp tolerance.
    intent_metadata_key:
        Payment intent metadata key holding the internal invoice id.
    storage_retry:
        Retry policy for the unit of work on transient storage errors.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        webhook_secret: str,
        *,
        notifier: PaymentFailureNotifier | None = None,
        gateway: StripeGateway | None = None,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        intent_metadata_key: str = DEFAULT_INTENT_METADATA_KEY,
        storage_retry: RetryConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not webhook_secret or not webhook_secret.strip():
            raise ConfigurationError("Webhook signing secret is required")
        self._session_factory = session_factory
        self._webhook_secret = webhook_secret
        self._notifier = notifier
        self._gateway = gateway
        self._tolerance = tolerance_seconds
        self._intent_metadata_key = intent_metadata_key
        self._storage_retry = storage_retry or RetryConfig(max_retries=1)
        self._clock = clock

        self._routes: dict[EventKind, _Handler] = {
            EventKind.INVOICE_PAID: self._on_invoice_paid,
            EventKind.INVOICE_PAYMENT_FAILED: self._on_invoice_payment_failed,
            EventKind.INVOICE_OVERDUE: self._on_invoice_overdue,
            EventKind.PAYMENT_INTENT_SUCCEEDED: self._on_intent_succeeded,
            EventKind.PAYMENT_INTENT_FAILED: self._on_intent_failed,
            EventKind.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            EventKind.PAYOUT_PAID: self._on_payout_paid,
            EventKind.PAYOUT_FAILED: self._on_payout_failed,
        }
        missing = set(EventKind) - set(self._routes)
        if missing:
            raise ConfigurationError(f"No route for event kinds: {sorted(k.value for k in missing)}")

    @property
    def routes(self) -> dict[EventKind, _Handler]:
        return dict(self._routes)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle(self, raw_body: bytes, signature_header: str | None) -> ReconciliationResult:
        """Authenticate, decode and process one inbound delivery.

        Raises
        ------
        AuthError
            The request could not be authenticated.
        DecodeError
            The payload is not a usable event envelope.
        StorageError
            The store could not be read or written; do not acknowledge.
        """
        authenticated = authenticate(
            raw_body,
            signature_header,
            self._webhook_secret,
            self._tolerance,
            clock=lambda: self._clock().timestamp(),
        )
        event = decode(authenticated, clock=self._clock)
        return await self.process(event)

    async def replay(self, event_id: str) -> ReconciliationResult:
        """Re-fetch *event_id* from the gateway API and process it.

        Signature verification is skipped because the envelope comes from
        an authenticated API call.  An event previously recorded as
        ``unresolved`` or ``ignored`` is processed again, so a record that
        appeared after the first delivery is reconciled now.  An event that
        was already applied (or found stale) is reported as a duplicate.
        """
        if self._gateway is None:
            raise ConfigurationError("Replay requires a gateway client")
        envelope = await self._gateway.fetch_event(event_id)
        event = decode_envelope(envelope, clock=self._clock)
        return await self.process(event)

    async def process(self, event: TypedEvent) -> ReconciliationResult:
        outcome, notice = await async_retry_with_backoff(
            lambda: self._unit_of_work(event),
            self._storage_retry,
            retryable_exceptions=(StorageError,),
            should_retry=lambda exc: is_transient_db_error(exc.__cause__),
        )
        logger.info(
            "Event %s (%s, created=%s, livemode=%s) reconciled: %s",
            event.event_id,
            event.type,
            event.created.isoformat() if event.created else "unknown",
            event.livemode,
            outcome.value,
        )

        if notice is not None and self._notifier is not None:
            await self._notifier.notify_payment_failure(
                invoice_number=notice.invoice_number,
                business_name=notice.business_name,
                business_email=notice.business_email,
                amount=notice.amount,
                reason=notice.reason,
                currency=notice.currency,
            )

        return ReconciliationResult(event_id=event.event_id, event_type=event.type, outcome=outcome)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def _unit_of_work(self, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        try:
            async with self._session_factory.begin() as session:
                return await self._route(session, event)
        except SQLAlchemyError as exc:
            logger.error("Storage failure while processing event %s: %s", event.event_id, exc)
            raise StorageError(f"Storage failure while processing event {event.event_id}: {exc}") from exc
        except StorageError as exc:
            logger.error("Storage failure while processing event %s: %s", event.event_id, exc)
            raise

    async def _route(self, session: AsyncSession, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        ledger = ProcessedEventRepository(session)
        if not await ledger.claim(event.event_id, event.type, event.received_at):
            logger.info("Event %s already processed; skipping", event.event_id)
            return Outcome.DUPLICATE, None

        notice: FailureNotice | None = None
        if event.kind is None:
            logger.info("Unhandled event type: %s (%s)", event.type, event.event_id)
            outcome = Outcome.IGNORED
        else:
            uow = _UnitOfWork(
                resolver=EntityResolver(session, self._intent_metadata_key),
                applier=TransitionApplier(session, clock=self._clock),
            )
            outcome, notice = await self._routes[event.kind](uow, event)

        await ledger.record_outcome(event.event_id, outcome.value)
        return outcome, notice

    # ------------------------------------------------------------------
    # Invoice events
    # ------------------------------------------------------------------

    async def _on_invoice_paid(self, uow: _UnitOfWork, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, InvoiceResource)  # noqa: S101
        invoice = await uow.resolver.resolve_invoice(resource.id, resource.number)
        if invoice is None:
            return Outcome.UNRESOLVED, None
        outcome = await uow.applier.mark_invoice_paid(invoice, resource)
        logger.info("Invoice %s marked paid", invoice.id)
        return outcome, None

    async def _on_invoice_payment_failed(
        self, uow: _UnitOfWork, event: TypedEvent
    ) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, InvoiceResource)  # noqa: S101
        invoice = await uow.resolver.resolve_invoice(resource.id, resource.number)
        if invoice is None:
            return Outcome.UNRESOLVED, None
        outcome = await uow.applier.mark_invoice_failed(invoice, resource)
        if outcome is not Outcome.APPLIED:
            return outcome, None

        logger.info("Invoice %s marked failed: %s", invoice.id, invoice.failure_reason)
        contact = await uow.resolver.resolve_billing_contact(invoice)
        notice = FailureNotice(
            invoice_number=invoice.invoice_number or resource.number or invoice.id,
            business_name=contact.name,
            business_email=contact.email,
            amount=to_major(resource.amount_due, resource.currency),
            reason=invoice.failure_reason or "",
            currency=resource.currency,
        )
        return outcome, notice

    async def _on_invoice_overdue(self, uow: _UnitOfWork, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, InvoiceResource)  # noqa: S101
        invoice = await uow.resolver.resolve_invoice(resource.id, resource.number)
        if invoice is None:
            return Outcome.UNRESOLVED, None
        return await uow.applier.mark_invoice_overdue(invoice, resource), None

    # ------------------------------------------------------------------
    # Payment intent events
    # ------------------------------------------------------------------

    async def _on_intent_succeeded(self, uow: _UnitOfWork, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, PaymentIntentResource)  # noqa: S101
        invoice = await uow.resolver.resolve_invoice_by_intent_metadata(resource.metadata)
        if invoice is None:
            return Outcome.UNRESOLVED, None
        outcome = await uow.applier.mark_intent_succeeded(invoice, resource)
        logger.info("Invoice %s marked paid via payment intent %s", invoice.id, resource.id)
        return outcome, None

    async def _on_intent_failed(self, uow: _UnitOfWork, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, PaymentIntentResource)  # noqa: S101
        invoice = await uow.resolver.resolve_invoice_by_intent_metadata(resource.metadata)
        if invoice is None:
            return Outcome.UNRESOLVED, None
        # Payment intent failures do not notify; only invoice failures do.
        return await uow.applier.mark_intent_failed(invoice, resource), None

    # ------------------------------------------------------------------
    # Subscription events
    # ------------------------------------------------------------------

    async def _on_subscription_updated(
        self, uow: _UnitOfWork, event: TypedEvent
    ) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, SubscriptionResource)  # noqa: S101
        business = await uow.resolver.resolve_business_by_subscription_id(resource.id)
        if business is None:
            return Outcome.UNRESOLVED, None
        outcome = await uow.applier.update_subscription(business, resource)
        logger.info("Business %s subscription status -> %s", business.id, resource.status)
        return outcome, None

    async def _on_subscription_deleted(
        self, uow: _UnitOfWork, event: TypedEvent
    ) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, SubscriptionResource)  # noqa: S101
        business = await uow.resolver.resolve_business_by_subscription_id(resource.id)
        if business is None:
            return Outcome.UNRESOLVED, None
        outcome = await uow.applier.cancel_subscription(business)
        logger.info("Business %s subscription cancelled", business.id)
        return outcome, None

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    async def _on_payout_paid(self, uow: _UnitOfWork, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, PayoutResource)  # noqa: S101
        return await uow.applier.record_payout(event.event_id, resource, PayoutStatus.PAID), None

    async def _on_payout_failed(self, uow: _UnitOfWork, event: TypedEvent) -> tuple[Outcome, FailureNotice | None]:
        resource = event.resource
        assert isinstance(resource, PayoutResource)  # noqa: S101
        logger.warning(
            "Payout %s failed: %s %s",
            resource.id,
            resource.failure_code,
            resource.failure_message,
        )
        return await uow.applier.record_payout(event.event_id, resource, PayoutStatus.FAILED), None
