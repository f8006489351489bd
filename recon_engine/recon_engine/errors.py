"""Exception taxonomy for the reconciliation engine.

Each category carries its acknowledgement semantics:

* :class:`AuthError` and :class:`DecodeError` are terminal -- the event
  can never become valid, so the caller answers 400 and the gateway stops
  retrying.
* :class:`StorageError` is retryable -- the caller withholds the
  acknowledgement (500) and relies on gateway redelivery.
* :class:`NotificationError` never leaves the notification dispatcher.

A resolver miss is not an exception at all; resolvers return ``None``.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(ReconciliationError):
    """Raised at construction time when a required input is missing."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(ReconciliationError):
    """The inbound request could not be authenticated."""

    reason = "auth_failed"


class MissingSignature(AuthError):
    reason = "missing_signature"


class InvalidSignature(AuthError):
    reason = "invalid_signature"


class StaleTimestamp(AuthError):
    reason = "stale_timestamp"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class DecodeError(ReconciliationError):
    """The authenticated payload is not a usable event envelope."""

    reason = "malformed_payload"


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------


class StorageError(ReconciliationError):
    """A read or write against the billing store failed.

    Retryable: the gateway will redeliver the event.
    """


class NotificationError(ReconciliationError):
    """A notification could not be delivered to the mail service."""


class GatewayRequestError(ReconciliationError):
    """A call to the gateway API failed (used by event replay)."""
