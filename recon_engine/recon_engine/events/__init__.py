"""Inbound gateway events: authentication, decoding and typed models."""

from recon_engine.events.authenticator import DEFAULT_TOLERANCE_SECONDS, authenticate
from recon_engine.events.decoder import decode, decode_envelope
from recon_engine.events.models import (
    AuthenticatedEvent,
    EventKind,
    InvoiceResource,
    PaymentIntentResource,
    PayoutResource,
    SubscriptionResource,
    TypedEvent,
)

__all__ = [
    "DEFAULT_TOLERANCE_SECONDS",
    "AuthenticatedEvent",
    "EventKind",
    "InvoiceResource",
    "PaymentIntentResource",
    "PayoutResource",
    "SubscriptionResource",
    "TypedEvent",
    "authenticate",
    "decode",
    "decode_envelope",
]
