"""
Ticket Registry, SQL backend

Each call runs in its own transaction and locks the ticket row with
SELECT ... FOR UPDATE, so two dispatchers racing for one ticket are
serialized by the database and the second one sees the first one's write.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import NotFoundError
from src.core.ids import generate_ticket_id
from . import lifecycle
from .models import RescueTicketRecord
from .registry import TicketRegistry
from .schemas import (
    Ticket, TicketCreate, TicketLocation, TicketSource, TicketStatus,
    VerificationResult, VictimInfo, utcnow,
)


logger = logging.getLogger(__name__)


def record_to_ticket(record: RescueTicketRecord) -> Ticket:
    return Ticket(
        ticket_id=record.ticket_id,
        status=TicketStatus(record.status),
        priority=record.priority,
        location=TicketLocation(lat=record.lat, lng=record.lng, address_text=record.address_text or ""),
        victim_info=VictimInfo(
            phone=record.phone or "",
            people_count=record.people_count,
            has_elderly=record.has_elderly,
            has_children=record.has_children,
            has_disabled=record.has_disabled,
            note=record.note or "",
        ),
        assigned_rescuer_id=record.assigned_rescuer_id,
        raw_message=record.raw_message or "",
        source=TicketSource(record.source),
        created_at=record.created_at,
        updated_at=record.updated_at,
        verified_at=record.verified_at,
        completed_at=record.completed_at,
        verification_result=(
            VerificationResult.model_validate(record.verification_result)
            if record.verification_result else None
        ),
    )


def write_ticket(record: RescueTicketRecord, ticket: Ticket) -> None:
    record.status = ticket.status.value
    record.priority = ticket.priority
    record.assigned_rescuer_id = ticket.assigned_rescuer_id
    record.lat = ticket.location.lat
    record.lng = ticket.location.lng
    record.address_text = ticket.location.address_text
    record.phone = ticket.victim_info.phone
    record.people_count = ticket.victim_info.people_count
    record.has_elderly = ticket.victim_info.has_elderly
    record.has_children = ticket.victim_info.has_children
    record.has_disabled = ticket.victim_info.has_disabled
    record.note = ticket.victim_info.note
    record.raw_message = ticket.raw_message
    record.source = ticket.source.value
    record.verification_result = (
        ticket.verification_result.model_dump(mode="json") if ticket.verification_result else None
    )
    record.created_at = ticket.created_at
    record.updated_at = ticket.updated_at
    record.verified_at = ticket.verified_at
    record.completed_at = ticket.completed_at


class SqlTicketRegistry(TicketRegistry):
    """Ticket registry over a shared relational store"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load_for_update(self, db: AsyncSession, ticket_id: str) -> RescueTicketRecord:
        result = await db.execute(
            select(RescueTicketRecord)
            .where(RescueTicketRecord.ticket_id == ticket_id)
            .with_for_update()
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Ticket", ticket_id)
        return record

    async def _mutate(self, ticket_id: str, change: Callable[[Ticket], object]) -> Ticket:
        async with self._session_factory() as db:
            async with db.begin():
                record = await self._load_for_update(db, ticket_id)
                ticket = record_to_ticket(record)
                change(ticket)
                write_ticket(record, ticket)
            return ticket

    async def get(self, ticket_id: str) -> Ticket:
        async with self._session_factory() as db:
            record = await db.get(RescueTicketRecord, ticket_id)
            if record is None:
                raise NotFoundError("Ticket", ticket_id)
            return record_to_ticket(record)

    async def create(self, payload: TicketCreate) -> Ticket:
        now = utcnow()
        ticket = Ticket(
            ticket_id=generate_ticket_id(),
            status=TicketStatus.OPEN,
            priority=payload.priority,
            location=payload.location.model_copy(),
            victim_info=payload.victim_info.model_copy(),
            raw_message=payload.raw_message,
            source=payload.source,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as db:
            async with db.begin():
                record = RescueTicketRecord()
                record.ticket_id = ticket.ticket_id
                write_ticket(record, ticket)
                db.add(record)
        logger.info(f"Created ticket {ticket.ticket_id}: priority={ticket.priority}, people={ticket.victim_info.people_count}")
        return ticket

    async def list(self, status: Optional[TicketStatus] = None) -> list[Ticket]:
        query = select(RescueTicketRecord)
        if status is not None:
            query = query.where(RescueTicketRecord.status == status.value)
        query = query.order_by(RescueTicketRecord.created_at.asc())
        async with self._session_factory() as db:
            result = await db.execute(query)
            return [record_to_ticket(r) for r in result.scalars().all()]

    async def find_active_by_phone(self, phone: str) -> Optional[Ticket]:
        if not phone:
            return None
        query = (
            select(RescueTicketRecord)
            .where(
                RescueTicketRecord.phone == phone,
                RescueTicketRecord.status.in_(["OPEN", "ASSIGNED", "IN_PROGRESS"]),
            )
            .order_by(RescueTicketRecord.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as db:
            record = (await db.execute(query)).scalar_one_or_none()
            return record_to_ticket(record) if record else None

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
