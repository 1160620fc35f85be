"""Outbound JSON webhook client.

Used to hand events to the notification (Telegram bot) and payout
(treasury) services, which live outside this process.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


class WebhookError(RuntimeError):
    """Webhook base error"""


class WebhookConfigurationError(WebhookError):
    """Webhook URL missing"""


class WebhookRequestError(WebhookError):
    """Network failure"""


class WebhookResponseError(WebhookError):
    """Receiver answered with an error status"""


class WebhookClient:
    """POSTs JSON events to one receiver URL"""

    def __init__(
        self,
        url: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            url: receiver endpoint, e.g. http://bot:3000/hooks/dispatch
            timeout: request timeout in seconds
            transport: custom httpx transport (tests)
        """
        if not url:
            raise WebhookConfigurationError("webhook url is not configured")
        self._url = url
        self._timeout = httpx.Timeout(timeout, connect=timeout)
        self._transport = transport

    @property
    def url(self) -> str:
        return self._url

    async def post_event(self, event: str, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        body = {"event": event, **dict(payload)}
        logger.info(f"webhook_post event={event} url={self._url}")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=body)
        except httpx.HTTPError as exc:
            raise WebhookRequestError(f"request to {self._url} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise WebhookResponseError(f"HTTP {resp.status_code}: {resp.text[:500]}")

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {"raw": resp.text[:500]}
        return data if isinstance(data, dict) else {"data": data}
