"""Signature verification for inbound gateway events.

The gateway signs ``"{timestamp}.{raw_body}"`` with HMAC-SHA256 using the
endpoint's shared secret and sends the result in the ``Stripe-Signature``
header::

    Stripe-Signature: t=1700000000,v1=5257a869e7ec...,v0=6ffbb59b2300...

The HMAC comparison is delegated to the gateway SDK.  The timestamp window
is enforced here, in both directions, so that a captured request cannot be
replayed later and a clock-skewed sender is rejected with a distinct error.

INVARIANT: verification runs over the exact bytes received.  The body is
never re-serialised before checking.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

import stripe

from recon_engine.errors import InvalidSignature, MissingSignature, StaleTimestamp
from recon_engine.events.models import AuthenticatedEvent

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


def _parse_timestamp(signature_header: str) -> int:
    """Extract the ``t=`` element from the signature header."""
    for item in signature_header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep and key == "t":
            try:
                return int(value)
            except ValueError:
                break
    raise InvalidSignature("Signature header has no valid timestamp")


def authenticate(
    raw_body: bytes,
    signature_header: str | None,
    shared_secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    *,
    clock: Callable[[], float] = time.time,
) -> AuthenticatedEvent:
    """Verify *raw_body* against *signature_header*.

    Parameters
    ----------
    raw_body:
        The request body exactly as received.
    signature_header:
        Value of the ``Stripe-Signature`` header, or ``None`` if absent.
    shared_secret:
        The endpoint signing secret (``whsec_...``).
    tolerance:
        Maximum allowed distance in seconds between the signed timestamp
        and the local clock.
    clock:
        Source of the current UNIX time; injectable for tests.

    Returns
    -------
    AuthenticatedEvent
        The verified payload, still serialised.

    Raises
    ------
    MissingSignature
        No signature header was supplied.
    InvalidSignature
        The header is malformed, the body is not UTF-8, or no signature
        matches.
    StaleTimestamp
        The signed timestamp is outside the tolerance window.
    """
    if not signature_header or not signature_header.strip():
        raise MissingSignature("No signature header provided")

    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidSignature("Request body is not valid UTF-8") from exc

    signed_at = _parse_timestamp(signature_header)

    try:
        # tolerance=None: the SDK only checks the HMAC; the window is ours.
        stripe.WebhookSignature.verify_header(payload, signature_header, shared_secret, tolerance=None)
    except stripe.SignatureVerificationError as exc:
        raise InvalidSignature(str(exc)) from exc

    skew = abs(clock() - signed_at)
    if skew > tolerance:
        logger.warning("Rejected event signed %.0fs away from local clock (tolerance %ds)", skew, tolerance)
        raise StaleTimestamp(f"Signature timestamp outside the {tolerance}s tolerance window")

    return AuthenticatedEvent(
        payload=payload,
        signed_at=datetime.fromtimestamp(signed_at, tz=UTC),
    )
