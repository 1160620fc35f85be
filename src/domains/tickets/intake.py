"""
SOS intake with deduplication

The same emergency is usually reported several times: the victim retries,
neighbours forward the message. Before a ticket is created:

1. same phone as an active ticket        -> skip (return the existing ticket)
2. active ticket within dedup_radius_km  -> merge the new info into it
3. otherwise                             -> create, then optionally dispatch
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from src.core.exceptions import ConflictError, InvalidStateError
from src.infra.config.dispatch_policy import DispatchPolicy
from .registry import TicketRegistry
from .schemas import IntakeAction, IntakeResponse, Ticket, TicketCreate

if TYPE_CHECKING:
    from src.domains.dispatch.service import DispatchService


logger = logging.getLogger(__name__)

COUNTRY_CODE = "84"


def normalize_phone(phone: str) -> str:
    """Vietnamese numbers to 84XXXXXXXXX: 0912345678, +84 912 345 678 and 912345678 all match."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith(COUNTRY_CODE):
        return digits
    if digits.startswith("0"):
        return COUNTRY_CODE + digits[1:]
    if len(digits) == 9:
        return COUNTRY_CODE + digits
    return digits


@dataclass(frozen=True)
class DuplicateCheck:
    action: IntakeAction
    existing: Optional[Ticket] = None
    match_type: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.existing is not None


async def check_duplicate(
    tickets: TicketRegistry,
    phone: str,
    lat: Optional[float],
    lng: Optional[float],
    radius_km: float,
) -> DuplicateCheck:
    normalized = normalize_phone(phone)
    if normalized:
        existing = await tickets.find_active_by_phone(normalized)
        if existing is not None:
            return DuplicateCheck(IntakeAction.skip, existing, "phone")

    if lat is not None and lng is not None:
        nearby = await tickets.find_active_near(lat, lng, radius_km)
        if nearby is not None:
            return DuplicateCheck(IntakeAction.merge, nearby, "location")

    return DuplicateCheck(IntakeAction.create)


class IntakeService:
    def __init__(
        self,
        tickets: TicketRegistry,
        policy: DispatchPolicy,
        dispatcher: Optional["DispatchService"] = None,
        auto_dispatch: bool = False,
    ) -> None:
        self.tickets = tickets
        self.policy = policy
        self.dispatcher = dispatcher
        self.auto_dispatch = auto_dispatch and dispatcher is not None

    async def submit(self, payload: TicketCreate) -> IntakeResponse:
        payload = payload.model_copy(deep=True)
        payload.victim_info.phone = normalize_phone(payload.victim_info.phone)

        check = await check_duplicate(
            self.tickets,
            payload.victim_info.phone,
            payload.location.lat,
            payload.location.lng,
            self.policy.dedup_radius_km,
        )

        if check.action == IntakeAction.skip:
            logger.info(f"Intake skipped: phone {payload.victim_info.phone} already on ticket {check.existing.ticket_id}")
            return IntakeResponse(
                action=IntakeAction.skip,
                ticket=check.existing,
                match_type=check.match_type,
                message=f"Ticket {check.existing.ticket_id} for this phone is already being handled ({check.existing.status.value})",
            )

        if check.action == IntakeAction.merge:
            ticket, applied = await self.tickets.merge_info(
                check.existing.ticket_id,
                additional_info=payload.victim_info.note or payload.raw_message or None,
                people_count=payload.victim_info.people_count,
                priority=payload.priority,
            )
            return IntakeResponse(
                action=IntakeAction.merge,
                ticket=ticket,
                match_type=check.match_type,
                message=(
                    f"Merged into ticket {ticket.ticket_id} within {self.policy.dedup_radius_km * 1000:.0f}m"
                    + (f" (updated: {', '.join(applied)})" if applied else " (nothing new)")
                ),
            )

        ticket = await self.tickets.create(payload)
        response = IntakeResponse(
            action=IntakeAction.create,
            ticket=ticket,
            message=f"Created ticket {ticket.ticket_id}",
        )
        if self.auto_dispatch:
            try:
                result = await self.dispatcher.dispatch(ticket.ticket_id)
            except (ConflictError, InvalidStateError) as e:
                logger.info(f"Auto-dispatch for {ticket.ticket_id} skipped: {e.message}")
            else:
                response.ticket = result.ticket
                response.dispatch = result.model_dump(mode="json", exclude={"ticket"})
                response.message = f"{response.message}; {result.message}"
        return response
