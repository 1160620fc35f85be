"""
Rescuer Registry, SQL backend

One transaction per call with the rescuer row locked (SELECT ... FOR UPDATE).
Two schedulers claiming the same rescuer are serialized by the database; the
second reads ON_MISSION and gets ConflictError.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import NotFoundError
from .models import RescuerRecord
from .registry import (
    RescuerRegistry, apply_claim, apply_location, apply_rating, apply_release,
    apply_status, new_rescuer,
)
from .schemas import (
    ELIGIBLE_STATUSES, RegistrationStatus, Rescuer, RescuerCreate, RescuerLocation,
    RescuerStatus, VehicleType,
)


logger = logging.getLogger(__name__)


def record_to_rescuer(record: RescuerRecord) -> Rescuer:
    return Rescuer(
        rescuer_id=record.rescuer_id,
        name=record.name,
        phone=record.phone,
        status=RescuerStatus(record.status),
        location=RescuerLocation(lat=record.lat, lng=record.lng, last_updated=record.location_updated_at),
        vehicle_type=VehicleType(record.vehicle_type),
        vehicle_capacity=record.vehicle_capacity,
        wallet_address=record.wallet_address,
        rating=record.rating,
        completed_missions=record.completed_missions,
        telegram_user_id=record.telegram_user_id,
        telegram_chat_id=record.telegram_chat_id,
        registration_status=RegistrationStatus(record.registration_status),
        current_ticket_id=record.current_ticket_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
        last_active_at=record.last_active_at,
    )


def write_rescuer(record: RescuerRecord, rescuer: Rescuer) -> None:
    record.name = rescuer.name
    record.phone = rescuer.phone
    record.status = rescuer.status.value
    record.lat = rescuer.location.lat
    record.lng = rescuer.location.lng
    record.location_updated_at = rescuer.location.last_updated
    record.vehicle_type = rescuer.vehicle_type.value
    record.vehicle_capacity = rescuer.vehicle_capacity
    record.wallet_address = rescuer.wallet_address
    record.rating = rescuer.rating
    record.completed_missions = rescuer.completed_missions
    record.telegram_user_id = rescuer.telegram_user_id
    record.telegram_chat_id = rescuer.telegram_chat_id
    record.registration_status = rescuer.registration_status.value
    record.current_ticket_id = rescuer.current_ticket_id
    record.created_at = rescuer.created_at
    record.updated_at = rescuer.updated_at
    record.last_active_at = rescuer.last_active_at


class SqlRescuerRegistry(RescuerRegistry):
    """Rescuer registry over a shared relational store"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load_for_update(self, db: AsyncSession, rescuer_id: str) -> RescuerRecord:
        result = await db.execute(
            select(RescuerRecord)
            .where(RescuerRecord.rescuer_id == rescuer_id)
            .with_for_update()
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Rescuer", rescuer_id)
        return record

    async def _mutate(self, rescuer_id: str, change: Callable[[Rescuer], object]) -> Rescuer:
        async with self._session_factory() as db:
            async with db.begin():
                record = await self._load_for_update(db, rescuer_id)
                rescuer = record_to_rescuer(record)
                change(rescuer)
                write_rescuer(record, rescuer)
            return rescuer

    async def get(self, rescuer_id: str) -> Rescuer:
        async with self._session_factory() as db:
            record = await db.get(RescuerRecord, rescuer_id)
            if record is None:
                raise NotFoundError("Rescuer", rescuer_id)
            return record_to_rescuer(record)

    async def register(self, data: RescuerCreate) -> Rescuer:
        rescuer = new_rescuer(data)
        async with self._session_factory() as db:
            async with db.begin():
                record = RescuerRecord()
                record.rescuer_id = rescuer.rescuer_id
                write_rescuer(record, rescuer)
                db.add(record)
        logger.info(f"Registered rescuer {rescuer.rescuer_id} ({rescuer.name}), vehicle={rescuer.vehicle_type.value}")
        return rescuer

    async def list(self, status: Optional[RescuerStatus] = None) -> list[Rescuer]:
        query = select(RescuerRecord)
        if status is not None:
            query = query.where(RescuerRecord.status == status.value)
        query = query.order_by(RescuerRecord.rescuer_id.asc())
        async with self._session_factory() as db:
            result = await db.execute(query)
            return [record_to_rescuer(r) for r in result.scalars().all()]

    async def list_eligible(self, status_filter: Iterable[RescuerStatus] = ELIGIBLE_STATUSES) -> list[Rescuer]:
        wanted = [s.value for s in status_filter]
        query = (
            select(RescuerRecord)
            .where(RescuerRecord.status.in_(wanted))
            .order_by(RescuerRecord.rescuer_id.asc())
        )
        async with self._session_factory() as db:
            result = await db.execute(query)
            return [record_to_rescuer(r) for r in result.scalars().all()]

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
