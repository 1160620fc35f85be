"""
Rescuer Registry

Sole owner of rescuer state and the gate for exclusive mission assignment:
transition_to_mission succeeds for exactly one caller per rescuer, the rest
get ConflictError and the scheduler moves on to the next candidate.

release() is keyed by the ticket that holds the rescuer, so re-driving a
completion or a compensation never double counts a mission.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

from src.core.exceptions import ConflictError, InvalidStateError, NotFoundError
from src.core.ids import generate_rescuer_id
from src.domains.tickets.schemas import utcnow
from .schemas import (
    ELIGIBLE_STATUSES, MAX_RATING, Rescuer, RescuerCreate, RescuerLocation, RescuerStatus,
)


logger = logging.getLogger(__name__)

# statuses a rescuer may pick for itself; ON_MISSION is only reachable via dispatch
SELF_SERVICE_STATUSES = frozenset({
    RescuerStatus.ONLINE, RescuerStatus.OFFLINE, RescuerStatus.IDLE, RescuerStatus.BUSY,
})


# ==================== Transition rules (shared by backends) ====================

def apply_claim(rescuer: Rescuer, ticket_id: str) -> Rescuer:
    if rescuer.status not in ELIGIBLE_STATUSES:
        raise ConflictError(
            error_code="RESCUER_UNAVAILABLE",
            message=f"Rescuer {rescuer.rescuer_id} is not available (status {rescuer.status.value})",
            details={"rescuer_id": rescuer.rescuer_id, "status": rescuer.status.value,
                     "current_ticket_id": rescuer.current_ticket_id},
        )
    now = utcnow()
    rescuer.status = RescuerStatus.ON_MISSION
    rescuer.current_ticket_id = ticket_id
    rescuer.updated_at = now
    rescuer.last_active_at = now
    return rescuer


def apply_release(rescuer: Rescuer, ticket_id: Optional[str], completed: bool) -> bool:
    """Returns False when there was nothing to release."""
    if rescuer.status != RescuerStatus.ON_MISSION:
        return False
    if ticket_id is not None and rescuer.current_ticket_id != ticket_id:
        return False
    now = utcnow()
    rescuer.status = RescuerStatus.IDLE
    rescuer.current_ticket_id = None
    if completed:
        rescuer.completed_missions += 1
    rescuer.updated_at = now
    rescuer.last_active_at = now
    return True


def apply_status(rescuer: Rescuer, status: RescuerStatus) -> Rescuer:
    if status not in SELF_SERVICE_STATUSES:
        raise InvalidStateError("Rescuer", rescuer.rescuer_id, rescuer.status.value, f"set status {status.value} on")
    if rescuer.status == RescuerStatus.ON_MISSION:
        raise InvalidStateError("Rescuer", rescuer.rescuer_id, rescuer.status.value, f"set status {status.value} on")
    now = utcnow()
    rescuer.status = status
    rescuer.updated_at = now
    rescuer.last_active_at = now
    return rescuer


def apply_location(rescuer: Rescuer, lat: float, lng: float) -> Rescuer:
    now = utcnow()
    rescuer.location = RescuerLocation(lat=lat, lng=lng, last_updated=now)
    rescuer.updated_at = now
    rescuer.last_active_at = now
    return rescuer


def apply_rating(rescuer: Rescuer, rating: float) -> Rescuer:
    rescuer.rating = max(0.0, min(MAX_RATING, float(rating)))
    rescuer.updated_at = utcnow()
    return rescuer


def new_rescuer(data: RescuerCreate) -> Rescuer:
    # starts OFFLINE until the rescuer goes online
    now = utcnow()
    return Rescuer(
        rescuer_id=generate_rescuer_id(),
        name=data.name,
        phone=data.phone,
        status=RescuerStatus.OFFLINE,
        location=RescuerLocation(lat=data.lat, lng=data.lng, last_updated=now),
        vehicle_type=data.vehicle_type,
        vehicle_capacity=data.vehicle_capacity,
        wallet_address=data.wallet_address,
        rating=MAX_RATING,
        completed_missions=0,
        telegram_user_id=data.telegram_user_id,
        telegram_chat_id=data.telegram_chat_id,
        registration_status=data.registration_status,
        created_at=now,
        updated_at=now,
        last_active_at=now,
    )


class RescuerRegistry(ABC):
    """Rescuer storage contract shared by every backend"""

    @abstractmethod
    async def get(self, rescuer_id: str) -> Rescuer:
        ...

    @abstractmethod
    async def register(self, data: RescuerCreate) -> Rescuer:
        ...

    @abstractmethod
    async def list(self, status: Optional[RescuerStatus] = None) -> list[Rescuer]:
        ...

    @abstractmethod
    async def list_eligible(self, status_filter: Iterable[RescuerStatus] = ELIGIBLE_STATUSES) -> list[Rescuer]:
        ...

    @abstractmethod
    async def transition_to_mission(self, rescuer_id: str, ticket_id: str) -> Rescuer:
        """ONLINE/IDLE -> ON_MISSION. ConflictError otherwise."""

    @abstractmethod
    async def release(self, rescuer_id: str, ticket_id: Optional[str] = None, completed: bool = False) -> Rescuer:
        """ON_MISSION -> IDLE; bumps completed_missions when ``completed``."""

    @abstractmethod
    async def set_status(self, rescuer_id: str, status: RescuerStatus) -> Rescuer:
        ...

    @abstractmethod
    async def update_location(self, rescuer_id: str, lat: float, lng: float) -> Rescuer:
        ...

    @abstractmethod
    async def update_rating(self, rescuer_id: str, rating: float) -> Rescuer:
        ...


class MemoryRescuerRegistry(RescuerRegistry):
    """In-process registry for single-node deployments and tests"""

    def __init__(self) -> None:
        self._rescuers: dict[str, Rescuer] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, rescuer_id: str) -> asyncio.Lock:
        return self._locks.setdefault(rescuer_id, asyncio.Lock())

    def _load(self, rescuer_id: str) -> Rescuer:
        rescuer = self._rescuers.get(rescuer_id)
        if rescuer is None:
            raise NotFoundError("Rescuer", rescuer_id)
        return rescuer.model_copy(deep=True)

    async def _mutate(self, rescuer_id: str, change: Callable[[Rescuer], object]) -> Rescuer:
        async with self._lock_for(rescuer_id):
            rescuer = self._load(rescuer_id)
            change(rescuer)
            self._rescuers[rescuer_id] = rescuer
            return rescuer.model_copy(deep=True)

    def add(self, rescuer: Rescuer) -> Rescuer:
        """Insert a fully-formed record (seeding, imports)."""
        self._rescuers[rescuer.rescuer_id] = rescuer.model_copy(deep=True)
        return rescuer

    async def get(self, rescuer_id: str) -> Rescuer:
        return self._load(rescuer_id)

    async def register(self, data: RescuerCreate) -> Rescuer:
        rescuer = new_rescuer(data)
        self._rescuers[rescuer.rescuer_id] = rescuer
        logger.info(f"Registered rescuer {rescuer.rescuer_id} ({rescuer.name}), vehicle={rescuer.vehicle_type.value}")
        return rescuer.model_copy(deep=True)

    async def list(self, status: Optional[RescuerStatus] = None) -> list[Rescuer]:
        return [
            r.model_copy(deep=True)
            for r in self._rescuers.values()
            if status is None or r.status == status
        ]

    async def list_eligible(self, status_filter: Iterable[RescuerStatus] = ELIGIBLE_STATUSES) -> list[Rescuer]:
        wanted = frozenset(status_filter)
        return [r.model_copy(deep=True) for r in self._rescuers.values() if r.status in wanted]

    async def transition_to_mission(self, rescuer_id: str, ticket_id: str) -> Rescuer:
        rescuer = await self._mutate(rescuer_id, lambda r: apply_claim(r, ticket_id))
        logger.info(f"Rescuer {rescuer_id} -> ON_MISSION for ticket {ticket_id}")
        return rescuer

    async def release(self, rescuer_id: str, ticket_id: Optional[str] = None, completed: bool = False) -> Rescuer:
        released: list[bool] = []
        rescuer = await self._mutate(rescuer_id, lambda r: released.append(apply_release(r, ticket_id, completed)))
        if released[0]:
            logger.info(f"Rescuer {rescuer_id} released -> IDLE (ticket={ticket_id}, completed={completed})")
        else:
            logger.info(f"Rescuer {rescuer_id} release for ticket {ticket_id} was a no-op (status {rescuer.status.value})")
        return rescuer

    async def set_status(self, rescuer_id: str, status: RescuerStatus) -> Rescuer:
        rescuer = await self._mutate(rescuer_id, lambda r: apply_status(r, status))
        logger.info(f"Rescuer {rescuer_id} -> {status.value}")
        return rescuer

    async def update_location(self, rescuer_id: str, lat: float, lng: float) -> Rescuer:
        return await self._mutate(rescuer_id, lambda r: apply_location(r, lat, lng))

    async def update_rating(self, rescuer_id: str, rating: float) -> Rescuer:
        return await self._mutate(rescuer_id, lambda r: apply_rating(r, rating))
