"""Tests for the mail transport and payment failure notifier."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from recon_engine.errors import NotificationError
from recon_engine.notifications import HttpEmailSender, PaymentFailureNotifier
from recon_engine.retry import RetryConfig

MAIL_URL = "https://mail.test/send"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# HttpEmailSender
# ---------------------------------------------------------------------------


class TestHttpEmailSender:
    @pytest.mark.asyncio
    async def test_posts_json_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        sender = HttpEmailSender(MAIL_URL, api_key="k_1", http_client=_client(handler))
        await sender.send_email("a@acme.test", "Hello", "<p>hi</p>")

        assert len(seen) == 1
        assert json.loads(seen[0].content) == {"to": "a@acme.test", "subject": "Hello", "html": "<p>hi</p>"}
        assert seen[0].headers["authorization"] == "Bearer k_1"

    @pytest.mark.asyncio
    @patch("recon_engine.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_server_error_retried_once(self, mock_sleep: AsyncMock) -> None:
        responses = iter([httpx.Response(503), httpx.Response(200)])
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return next(responses)

        sender = HttpEmailSender(MAIL_URL, http_client=_client(handler))
        await sender.send_email("a@acme.test", "s", "h")
        assert len(calls) == 2
        mock_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("recon_engine.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_exhausted_retries_raise_notification_error(self, mock_sleep: AsyncMock) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        sender = HttpEmailSender(MAIL_URL, retry=RetryConfig(max_retries=1), http_client=_client(handler))
        with pytest.raises(NotificationError, match="a@acme.test"):
            await sender.send_email("a@acme.test", "s", "h")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(422)

        sender = HttpEmailSender(MAIL_URL, http_client=_client(handler))
        with pytest.raises(NotificationError, match="422"):
            await sender.send_email("a@acme.test", "s", "h")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self) -> None:
        client = _client(lambda request: httpx.Response(200))
        sender = HttpEmailSender(MAIL_URL, http_client=client)
        await sender.close()
        assert not client.is_closed
        await client.aclose()


# ---------------------------------------------------------------------------
# PaymentFailureNotifier
# ---------------------------------------------------------------------------


def _notifier(sender: AsyncMock, ops_email: str = "ops@platform.test") -> PaymentFailureNotifier:
    return PaymentFailureNotifier(
        sender,
        ops_email,
        clock=lambda: datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
    )


class TestPaymentFailureNotifier:
    @pytest.mark.asyncio
    async def test_sends_business_and_ops_messages(self, mock_sender: AsyncMock) -> None:
        await _notifier(mock_sender).notify_payment_failure(
            "INV-1", "Acme GmbH", "a@acme.test", Decimal("50.00"), "Card expired"
        )

        assert mock_sender.send_email.await_count == 2
        by_recipient = {c.args[0]: c.args for c in mock_sender.send_email.await_args_list}

        to, subject, html = by_recipient["a@acme.test"]
        assert subject == "Payment failed - invoice INV-1"
        assert "50.00 EUR" in html
        assert "Card expired" in html
        assert "48 hours" in html

        to, subject, html = by_recipient["ops@platform.test"]
        assert subject == "PAYMENT FAILED: Acme GmbH - INV-1"
        assert "a@acme.test" in html
        assert "2026-03-01 12:00 UTC" in html

    @pytest.mark.asyncio
    async def test_no_business_email_sends_ops_only(self, mock_sender: AsyncMock) -> None:
        await _notifier(mock_sender).notify_payment_failure("INV-1", "Acme", None, Decimal("1.00"), "declined")
        mock_sender.send_email.assert_awaited_once()
        assert mock_sender.send_email.await_args.args[0] == "ops@platform.test"

    @pytest.mark.asyncio
    async def test_no_ops_email_sends_business_only(self, mock_sender: AsyncMock) -> None:
        notifier = _notifier(mock_sender, ops_email="")
        await notifier.notify_payment_failure("INV-1", "Acme", "a@acme.test", Decimal("1.00"), "declined")
        mock_sender.send_email.assert_awaited_once()
        assert mock_sender.send_email.await_args.args[0] == "a@acme.test"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_the_other(
        self, mock_sender: AsyncMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        async def flaky(to: str, subject: str, html: str) -> None:
            if to == "a@acme.test":
                raise NotificationError("mailbox full")

        mock_sender.send_email.side_effect = flaky
        await _notifier(mock_sender).notify_payment_failure(
            "INV-1", "Acme", "a@acme.test", Decimal("1.00"), "declined"
        )

        assert mock_sender.send_email.await_count == 2
        assert "Failed to send business payment failure notice" in caplog.text

    @pytest.mark.asyncio
    async def test_values_are_html_escaped(self, mock_sender: AsyncMock) -> None:
        await _notifier(mock_sender).notify_payment_failure(
            "INV-1", "<script>x</script>", None, Decimal("1.00"), "declined"
        )
        html = mock_sender.send_email.await_args.args[2]
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    @pytest.mark.asyncio
    async def test_zero_decimal_currency(self, mock_sender: AsyncMock) -> None:
        await _notifier(mock_sender).notify_payment_failure(
            "INV-1", "Acme", None, Decimal("5000"), "declined", currency="jpy"
        )
        assert "5,000 JPY" in mock_sender.send_email.await_args.args[2]
