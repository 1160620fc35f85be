"""Notification collaborator.

The engine tells the outside world three things: a ticket got a rescuer, a
ticket found nobody (broadcast to everyone), and a ticket was completed.
Delivery is fire-and-forget; a failed delivery never rolls back state.
"""
from __future__ import annotations

import logging
from typing import Protocol

from .webhook_client import WebhookClient, WebhookError

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify_assignment(self, ticket_id: str, rescuer_id: str) -> None:
        ...

    async def broadcast(self, ticket_id: str) -> None:
        ...

    async def notify_completion(self, ticket_id: str) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes the event to the log only"""

    async def notify_assignment(self, ticket_id: str, rescuer_id: str) -> None:
        logger.info(f"[notify] ticket {ticket_id} assigned to rescuer {rescuer_id}")

    async def broadcast(self, ticket_id: str) -> None:
        logger.warning(f"[notify] no rescuer available for ticket {ticket_id}, broadcasting alert")

    async def notify_completion(self, ticket_id: str) -> None:
        logger.info(f"[notify] ticket {ticket_id} completed")


class WebhookNotifier:
    """Forwards events to the bot service over HTTP"""

    def __init__(self, client: WebhookClient) -> None:
        self._client = client

    async def notify_assignment(self, ticket_id: str, rescuer_id: str) -> None:
        await self._client.post_event("ticket.assigned", {"ticket_id": ticket_id, "rescuer_id": rescuer_id})

    async def broadcast(self, ticket_id: str) -> None:
        await self._client.post_event("ticket.broadcast", {"ticket_id": ticket_id})

    async def notify_completion(self, ticket_id: str) -> None:
        await self._client.post_event("ticket.completed", {"ticket_id": ticket_id})


async def deliver(coro, description: str) -> bool:
    """Await a collaborator call; log and swallow delivery failures."""
    try:
        await coro
        return True
    except WebhookError as e:
        logger.warning(f"{description} failed: {e}")
    except Exception as e:
        logger.exception(f"{description} failed unexpectedly: {e}")
    return False
