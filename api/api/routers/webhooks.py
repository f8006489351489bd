"""Inbound Stripe webhook endpoint.

The request body is read as raw bytes and handed to the reconciler
untouched; signature verification depends on the exact bytes received.

Status mapping:

* 200 ``{"received": true}`` -- the event was routed, whatever its outcome
  (applied, duplicate, ignored, unresolved, stale).
* 400 -- authentication or decoding failed; redelivery cannot help.
* 500 -- the billing store failed; the gateway will redeliver.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel
from recon_engine.errors import AuthError, DecodeError, StorageError

from api.dependencies import ReconcilerDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookAck(BaseModel):
    """Acknowledgement returned for every routed event."""

    received: bool = True


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request, reconciler: ReconcilerDep) -> WebhookAck:
    """Receive one Stripe event delivery.

    This endpoint has no session authentication; the ``Stripe-Signature``
    header is the only credential.
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        result = await reconciler.handle(body, signature)
    except AuthError as exc:
        logger.warning("Rejected Stripe webhook (%s): %s", exc.reason, exc)
        raise HTTPException(status_code=400, detail=f"Webhook error: {exc.reason}") from exc
    except DecodeError as exc:
        logger.warning("Malformed Stripe webhook payload: %s", exc)
        raise HTTPException(status_code=400, detail=f"Webhook error: {exc.reason}") from exc
    except StorageError as exc:
        logger.error("Stripe webhook processing failed: %s", exc)
        raise HTTPException(status_code=500, detail="Webhook processing failed") from exc

    logger.debug("Acknowledged %s (%s): %s", result.event_id, result.event_type, result.outcome.value)
    return WebhookAck()
