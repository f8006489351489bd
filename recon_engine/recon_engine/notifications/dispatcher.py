"""Best-effort payment failure notifications.

Two messages are composed independently: one to the business (only when
an address is known) and one to the operations mailbox.  They are sent
concurrently and neither can block or fail the other.  Nothing raised here
ever reaches the reconciliation result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from recon_engine.money import format_amount
from recon_engine.notifications.mailer import EmailSender

logger = logging.getLogger(__name__)

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

DEFAULT_RETRY_WINDOW_HOURS = 48


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _build_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(["html"]),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


class PaymentFailureNotifier:
    """Compose and send the two payment-failure messages.

    Parameters
    ----------
    sender:
        Mail transport implementing ``send_email``.
    ops_email:
        Fixed operations address that receives every failure.
    retry_window_hours:
        Retry window quoted to the business.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        sender: EmailSender,
        ops_email: str,
        *,
        retry_window_hours: int = DEFAULT_RETRY_WINDOW_HOURS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sender = sender
        self._ops_email = ops_email
        self._retry_window_hours = retry_window_hours
        self._clock = clock
        self._env = _build_environment()

    def render(self, template_name: str, **context: object) -> str:
        return self._env.get_template(template_name).render(**context)

    async def notify_payment_failure(
        self,
        invoice_number: str,
        business_name: str,
        business_email: str | None,
        amount: Decimal,
        reason: str,
        currency: str = "eur",
    ) -> None:
        """Send the business and operations messages; never raises."""
        context = {
            "invoice_number": invoice_number,
            "business_name": business_name,
            "business_email": business_email,
            "amount": format_amount(amount, currency),
            "reason": reason,
            "occurred_at": self._clock().strftime("%Y-%m-%d %H:%M UTC"),
            "retry_window_hours": self._retry_window_hours,
        }

        sends = []
        if business_email:
            sends.append(
                self._send(
                    "business",
                    business_email,
                    f"Payment failed - invoice {invoice_number}",
                    "business_payment_failed.html",
                    context,
                )
            )
        else:
            logger.info("No e-mail on file for %s; skipping business notification", business_name)

        if self._ops_email:
            sends.append(
                self._send(
                    "operations",
                    self._ops_email,
                    f"PAYMENT FAILED: {business_name} - {invoice_number}",
                    "ops_payment_failed.html",
                    context,
                )
            )
        else:
            logger.warning("No operations address configured; skipping operations notification")

        await asyncio.gather(*sends)

    async def _send(
        self,
        audience: str,
        to: str,
        subject: str,
        template_name: str,
        context: dict[str, object],
    ) -> None:
        try:
            html = self.render(template_name, **context)
            await self._sender.send_email(to, subject, html)
        except Exception:
            logger.exception(
                "Failed to send %s payment failure notice for invoice %s",
                audience,
                context["invoice_number"],
            )
            return
        logger.info(
            "Payment failure notice sent to %s for invoice %s",
            audience,
            context["invoice_number"],
        )
