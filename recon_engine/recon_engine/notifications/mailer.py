"""Mail transport: ``send_email(to, subject, html)`` over HTTP.

The mail service itself is an external collaborator; this module only
knows its single POST endpoint.  Transport errors and 5xx responses get one
retry with backoff, anything else fails immediately.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from recon_engine.errors import NotificationError
from recon_engine.retry import RetryConfig, async_retry_with_backoff

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 5.0


class EmailSender(Protocol):
    """Anything that can deliver one HTML e-mail."""

    async def send_email(self, to: str, subject: str, html: str) -> None: ...


class _ServerError(Exception):
    """A 5xx from the mail service; retried like a transport error."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class HttpEmailSender:
    """Deliver e-mail by POSTing ``{to, subject, html}`` as JSON.

    Parameters
    ----------
    service_url:
        Full URL of the mail service's send endpoint.
    api_key:
        Optional bearer token for the mail service.
    timeout:
        Per-request timeout in seconds.
    retry:
        Retry policy for transport errors and 5xx responses.
    http_client:
        Optional ``httpx.AsyncClient`` for testing.  A default client is
        created if not provided.
    """

    def __init__(
        self,
        service_url: str,
        *,
        api_key: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        retry: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = service_url
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._retry = retry or RetryConfig(max_retries=1)
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, body: dict[str, str]) -> None:
        response = await self._client.post(self._url, json=body, headers=self._headers)
        if response.status_code >= 500:
            raise _ServerError(response.status_code)
        if response.status_code >= 400:
            raise NotificationError(f"Mail service rejected message: HTTP {response.status_code}")

    async def send_email(self, to: str, subject: str, html: str) -> None:
        body = {"to": to, "subject": subject, "html": html}
        try:
            await async_retry_with_backoff(
                lambda: self._post(body),
                self._retry,
                retryable_exceptions=(httpx.TransportError, _ServerError),
            )
        except (httpx.TransportError, _ServerError) as exc:
            raise NotificationError(f"Mail delivery to {to} failed: {exc}") from exc
        logger.info("E-mail sent to=%s subject=%r", to, subject)
