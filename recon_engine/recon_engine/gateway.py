"""Gateway API client used to re-fetch events for replay.

The API key is passed per request; the module never writes ``stripe.api_key``
so that several clients (or tests) can coexist in one process.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import stripe

from recon_engine.errors import ConfigurationError, GatewayRequestError

logger = logging.getLogger(__name__)


class StripeGateway:
    """Holds the gateway credential and fetches event envelopes.

    Parameters
    ----------
    api_key:
        Secret API key.  Blank keys are rejected at construction.
    """

    def __init__(self, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise ConfigurationError("Stripe API key is required")
        self._api_key = api_key

    def _retrieve(self, event_id: str) -> dict[str, Any]:
        event = stripe.Event.retrieve(event_id, api_key=self._api_key)
        return json.loads(str(event))

    async def fetch_event(self, event_id: str) -> dict[str, Any]:
        """Return the event envelope for *event_id* as a plain dict.

        Raises
        ------
        GatewayRequestError
            If the event does not exist or the API call fails.
        """
        try:
            envelope = await asyncio.to_thread(self._retrieve, event_id)
        except stripe.StripeError as exc:
            raise GatewayRequestError(f"Failed to fetch event {event_id}: {exc}") from exc
        logger.info("Fetched event %s (%s) from gateway", event_id, envelope.get("type"))
        return envelope
