"""
Ticket Registry

Sole owner of ticket state. Every mutation is atomic per ticket: concurrent
callers are serialized on the ticket and the loser sees ConflictError or
InvalidStateError, never a half-written ticket.

Backends:
- MemoryTicketRegistry: dict guarded by one asyncio.Lock per ticket id
- SqlTicketRegistry (repository.py): row lock inside one transaction per call
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from src.core.exceptions import NotFoundError
from src.core.ids import generate_ticket_id
from src.planning.algorithms.base import Location, haversine_distance
from . import lifecycle
from .schemas import (
    ACTIVE_STATUSES, Ticket, TicketCreate, TicketStatus, VerificationResult,
)


logger = logging.getLogger(__name__)


class TicketRegistry(ABC):
    """Ticket storage contract shared by every backend"""

    @abstractmethod
    async def get(self, ticket_id: str) -> Ticket:
        """Raises NotFoundError for unknown ids."""

    @abstractmethod
    async def create(self, payload: TicketCreate) -> Ticket:
        """Persist a new OPEN ticket."""

    @abstractmethod
    async def list(self, status: Optional[TicketStatus] = None) -> list[Ticket]:
        ...

    @abstractmethod
    async def assign(self, ticket_id: str, rescuer_id: str) -> Ticket:
        """OPEN -> ASSIGNED. ConflictError unless the ticket is OPEN."""

    @abstractmethod
    async def mark_in_progress(self, ticket_id: str) -> Ticket:
        ...

    @abstractmethod
    async def mark_verified(self, ticket_id: str, result: Optional[VerificationResult] = None) -> Ticket:
        ...

    @abstractmethod
    async def mark_completed(self, ticket_id: str) -> tuple[Ticket, bool]:
        """VERIFIED -> COMPLETED. The flag is True only for the call that made the transition."""

    @abstractmethod
    async def cancel(self, ticket_id: str) -> Ticket:
        ...

    @abstractmethod
    async def merge_info(
        self,
        ticket_id: str,
        additional_info: Optional[str] = None,
        people_count: Optional[int] = None,
        priority: Optional[int] = None,
    ) -> tuple[Ticket, list[str]]:
        ...

    async def find_active_by_phone(self, phone: str) -> Optional[Ticket]:
        if not phone:
            return None
        active = [t for t in await self.list() if t.status in ACTIVE_STATUSES and t.victim_info.phone == phone]
        active.sort(key=lambda t: t.created_at, reverse=True)
        return active[0] if active else None

    async def find_active_near(self, lat: float, lng: float, radius_km: float) -> Optional[Ticket]:
        center = Location(lat=lat, lng=lng)
        nearest: Optional[tuple[float, Ticket]] = None
        for t in await self.list():
            if t.status not in ACTIVE_STATUSES:
                continue
            d = haversine_distance(center, Location(lat=t.location.lat, lng=t.location.lng))
            if d <= radius_km and (nearest is None or d < nearest[0]):
                nearest = (d, t)
        return nearest[1] if nearest else None


class MemoryTicketRegistry(TicketRegistry):
    """In-process registry for single-node deployments and tests"""

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, ticket_id: str) -> asyncio.Lock:
        return self._locks.setdefault(ticket_id, asyncio.Lock())

    def _load(self, ticket_id: str) -> Ticket:
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket.model_copy(deep=True)

    async def _mutate(self, ticket_id: str, change: Callable[[Ticket], object]) -> Ticket:
        async with self._lock_for(ticket_id):
            ticket = self._load(ticket_id)
            change(ticket)
            self._tickets[ticket_id] = ticket
            return ticket.model_copy(deep=True)

    async def get(self, ticket_id: str) -> Ticket:
        return self._load(ticket_id)

    async def create(self, payload: TicketCreate) -> Ticket:
        ticket = Ticket(
            ticket_id=generate_ticket_id(),
            status=TicketStatus.OPEN,
            priority=payload.priority,
            location=payload.location.model_copy(),
            victim_info=payload.victim_info.model_copy(),
            raw_message=payload.raw_message,
            source=payload.source,
        )
        self._tickets[ticket.ticket_id] = ticket
        logger.info(f"Created ticket {ticket.ticket_id}: priority={ticket.priority}, people={ticket.victim_info.people_count}")
        return ticket.model_copy(deep=True)

    async def list(self, status: Optional[TicketStatus] = None) -> list[Ticket]:
        return [
            t.model_copy(deep=True)
            for t in self._tickets.values()
            if status is None or t.status == status
        ]

    async def assign(self, ticket_id: str, rescuer_id: str) -> Ticket:
        ticket = await self._mutate(ticket_id, lambda t: lifecycle.apply_assign(t, rescuer_id))
        logger.info(f"Ticket {ticket_id} -> ASSIGNED to {rescuer_id}")
        return ticket

    async def mark_in_progress(self, ticket_id: str) -> Ticket:
        ticket = await self._mutate(ticket_id, lifecycle.apply_in_progress)
        logger.info(f"Ticket {ticket_id} -> IN_PROGRESS")
        return ticket

    async def mark_verified(self, ticket_id: str, result: Optional[VerificationResult] = None) -> Ticket:
        ticket = await self._mutate(ticket_id, lambda t: lifecycle.apply_verified(t, result))
        logger.info(f"Ticket {ticket_id} -> VERIFIED")
        return ticket

    async def mark_completed(self, ticket_id: str) -> tuple[Ticket, bool]:
        transitioned: list[bool] = []
        ticket = await self._mutate(ticket_id, lambda t: transitioned.append(lifecycle.apply_completed(t)))
        if transitioned[0]:
            logger.info(f"Ticket {ticket_id} -> COMPLETED")
        return ticket, transitioned[0]

    async def cancel(self, ticket_id: str) -> Ticket:
        ticket = await self._mutate(ticket_id, lifecycle.apply_cancel)
        logger.info(f"Ticket {ticket_id} -> CANCELLED")
        return ticket

    async def merge_info(
        self,
        ticket_id: str,
        additional_info: Optional[str] = None,
        people_count: Optional[int] = None,
        priority: Optional[int] = None,
    ) -> tuple[Ticket, list[str]]:
        applied: list[str] = []

        def change(t: Ticket) -> None:
            applied.extend(lifecycle.apply_merge(t, additional_info, people_count, priority))

        ticket = await self._mutate(ticket_id, change)
        if applied:
            logger.info(f"Merged into ticket {ticket_id}: {applied}")
        return ticket, applied
