"""Parse an authenticated payload into a :class:`TypedEvent`."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from recon_engine.errors import DecodeError
from recon_engine.events.models import RESOURCE_TYPES, AuthenticatedEvent, EventKind, TypedEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def decode_envelope(
    envelope: Any,
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> TypedEvent:
    """Build a :class:`TypedEvent` from an already-parsed envelope dict.

    Shared by the webhook path (after :func:`decode`) and the replay path,
    where the envelope comes from the gateway API rather than a request.
    """
    if not isinstance(envelope, dict):
        raise DecodeError("Event envelope must be a JSON object")

    event_id = envelope.get("id")
    event_type = envelope.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise DecodeError("Event envelope has no id")
    if not isinstance(event_type, str) or not event_type:
        raise DecodeError(f"Event {event_id} has no type")

    data = envelope.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict):
        raise DecodeError(f"Event {event_id} has no data.object")

    kind = EventKind.parse(event_type)
    resource = None
    if kind is not None:
        try:
            resource = RESOURCE_TYPES[kind].model_validate(data_object)
        except ValidationError as exc:
            raise DecodeError(f"Event {event_id} ({event_type}) has a malformed resource: {exc}") from exc

    created = envelope.get("created")
    return TypedEvent(
        event_id=event_id,
        type=event_type,
        kind=kind,
        resource=resource,
        created=datetime.fromtimestamp(created, tz=UTC) if isinstance(created, int) else None,
        livemode=bool(envelope.get("livemode", False)),
        received_at=clock(),
    )


def decode(
    event: AuthenticatedEvent,
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> TypedEvent:
    """Deserialise a verified payload.

    Unknown event types decode successfully with ``kind=None``; only an
    unusable envelope raises :class:`DecodeError`.
    """
    try:
        envelope = json.loads(event.payload)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Payload is not valid JSON: {exc.msg}") from exc

    typed = decode_envelope(envelope, clock=clock)
    if typed.is_unknown:
        logger.info("Decoded unrecognised event type %s (%s)", typed.type, typed.event_id)
    return typed
