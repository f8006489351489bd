"""Tests for decoding authenticated payloads into typed events."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from recon_engine.errors import DecodeError
from recon_engine.events.decoder import decode, decode_envelope
from recon_engine.events.models import (
    AuthenticatedEvent,
    EventKind,
    InvoiceResource,
    PaymentIntentResource,
    PayoutResource,
    SubscriptionResource,
)

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _authenticated(payload: Any) -> AuthenticatedEvent:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return AuthenticatedEvent(payload=text, signed_at=NOW)


class TestDecodeKinds:
    def test_invoice_paid(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        env = make_envelope(
            "invoice.paid",
            {"id": "in_1", "number": "INV-1", "amount_paid": 5000, "currency": "eur", "payment_intent": "pi_1"},
        )
        event = decode(_authenticated(env), clock=lambda: NOW)
        assert event.kind is EventKind.INVOICE_PAID
        assert isinstance(event.resource, InvoiceResource)
        assert event.resource.amount_paid == 5000
        assert event.resource.payment_intent == "pi_1"
        assert event.received_at == NOW
        assert event.created == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    def test_expanded_payment_intent_keeps_id(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        env = make_envelope("invoice.paid", {"id": "in_1", "payment_intent": {"id": "pi_9", "object": "payment_intent"}})
        event = decode(_authenticated(env))
        assert event.resource.payment_intent == "pi_9"

    def test_payment_intent(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        env = make_envelope(
            "payment_intent.payment_failed",
            {"id": "pi_1", "amount": 100, "metadata": {"invoiceId": "inv_1"}, "last_payment_error": {"message": "no"}},
        )
        event = decode(_authenticated(env))
        assert isinstance(event.resource, PaymentIntentResource)
        assert event.resource.metadata == {"invoiceId": "inv_1"}
        assert event.resource.last_payment_error.message == "no"

    def test_subscription_period_end_falls_back_to_items(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        env = make_envelope(
            "customer.subscription.updated",
            {"id": "sub_1", "status": "active", "items": {"data": [{"current_period_end": 1_800_000_000}]}},
        )
        event = decode(_authenticated(env))
        assert isinstance(event.resource, SubscriptionResource)
        assert event.resource.period_end == 1_800_000_000

    def test_payout(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        env = make_envelope("payout.failed", {"id": "po_1", "amount": 2500, "failure_code": "account_closed"})
        event = decode(_authenticated(env))
        assert isinstance(event.resource, PayoutResource)
        assert event.resource.failure_code == "account_closed"

    def test_sparse_resource_takes_defaults(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        event = decode(_authenticated(make_envelope("invoice.overdue", {})))
        assert event.resource.id == ""
        assert event.resource.amount_due == 0
        assert event.resource.number is None

    def test_unknown_type_is_not_an_error(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        event = decode(_authenticated(make_envelope("charge.refunded", {"id": "ch_1"})))
        assert event.kind is None
        assert event.is_unknown
        assert event.type == "charge.refunded"
        assert event.resource is None


class TestMalformed:
    def test_invalid_json(self) -> None:
        with pytest.raises(DecodeError):
            decode(_authenticated("{not json"))

    def test_not_an_object(self) -> None:
        with pytest.raises(DecodeError):
            decode(_authenticated("[1, 2, 3]"))

    def test_missing_id(self) -> None:
        with pytest.raises(DecodeError):
            decode_envelope({"type": "invoice.paid", "data": {"object": {}}})

    def test_missing_type(self) -> None:
        with pytest.raises(DecodeError):
            decode_envelope({"id": "evt_1", "data": {"object": {}}})

    def test_missing_data_object(self) -> None:
        with pytest.raises(DecodeError):
            decode_envelope({"id": "evt_1", "type": "invoice.paid", "data": {}})

    def test_wrong_field_type_in_recognised_resource(self, make_envelope: Callable[..., dict[str, Any]]) -> None:
        env = make_envelope("invoice.paid", {"id": "in_1", "amount_paid": "lots"})
        with pytest.raises(DecodeError):
            decode(_authenticated(env))


class TestEventKind:
    def test_parse_known(self) -> None:
        assert EventKind.parse("payout.paid") is EventKind.PAYOUT_PAID

    def test_parse_unknown(self) -> None:
        assert EventKind.parse("customer.created") is None

    def test_closed_set(self) -> None:
        assert len(list(EventKind)) == 9
