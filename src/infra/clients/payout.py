"""Payout collaborator.

Invoked once a ticket is completed. How the treasury moves money (and
whether it succeeds) is its own business.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from pydantic import BaseModel

from .webhook_client import WebhookClient

logger = logging.getLogger(__name__)


class PayoutRequest(BaseModel):
    ticket_id: str
    rescuer_id: str
    wallet_address: Optional[str] = None
    amount: float
    currency: str = "USDC"


class PayoutClient(Protocol):
    async def request_payout(self, request: PayoutRequest) -> None:
        ...


class LoggingPayoutClient:
    async def request_payout(self, request: PayoutRequest) -> None:
        if not request.wallet_address:
            logger.warning(f"[payout] rescuer {request.rescuer_id} has no wallet; reward for {request.ticket_id} left pending")
            return
        logger.info(
            f"[payout] {request.amount} {request.currency} to {request.wallet_address} "
            f"for ticket {request.ticket_id}"
        )


class WebhookPayoutClient:
    def __init__(self, client: WebhookClient) -> None:
        self._client = client

    async def request_payout(self, request: PayoutRequest) -> None:
        await self._client.post_event("payout.requested", request.model_dump())
