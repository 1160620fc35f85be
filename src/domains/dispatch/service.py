from __future__ import annotations

import logging

from src.core.exceptions import ConflictError, InvalidStateError
from src.domains.rescuers.registry import RescuerRegistry
from src.domains.rescuers.schemas import ELIGIBLE_STATUSES, RescuerStatus
from src.domains.tickets.registry import TicketRegistry
from src.domains.tickets.schemas import HOLDING_STATUSES, Ticket, TicketStatus
from src.infra.clients.notifier import Notifier, deliver
from src.planning.algorithms.base import Location, haversine_distance
from .scheduler import DispatchScheduler
from .schemas import (
    DispatchResult, DispatchStatus, DispatchSweepResponse, RescuerStats, StatsResponse, TicketStats,
)


logger = logging.getLogger(__name__)


class DispatchService:
    """Scheduler plus the side effects around it: notifications, sweeps, direct accepts and cancellation"""

    def __init__(
        self,
        tickets: TicketRegistry,
        rescuers: RescuerRegistry,
        scheduler: DispatchScheduler,
        notifier: Notifier,
    ) -> None:
        self.tickets = tickets
        self.rescuers = rescuers
        self.scheduler = scheduler
        self.notifier = notifier

    async def dispatch(self, ticket_id: str) -> DispatchResult:
        result = await self.scheduler.dispatch(ticket_id)
        if result.status == DispatchStatus.ASSIGNED:
            await deliver(
                self.notifier.notify_assignment(ticket_id, result.rescuer.rescuer_id),
                f"assignment notice for {ticket_id}",
            )
        else:
            await deliver(self.notifier.broadcast(ticket_id), f"broadcast for {ticket_id}")
        return result

    async def dispatch_open(self) -> DispatchSweepResponse:
        """Dispatch every OPEN ticket, most urgent first, oldest first within a priority."""
        pending = await self.tickets.list(TicketStatus.OPEN)
        pending.sort(key=lambda t: (-t.priority, t.created_at))

        results: list[DispatchResult] = []
        skipped = 0
        for ticket in pending:
            try:
                results.append(await self.dispatch(ticket.ticket_id))
            except (ConflictError, InvalidStateError) as e:
                # another caller got there first
                skipped += 1
                logger.info(f"Sweep skipped ticket {ticket.ticket_id}: {e.message}")

        assigned = sum(1 for r in results if r.assigned)
        logger.info(f"Dispatch sweep: {len(pending)} open, {assigned} assigned, {len(results) - assigned} exhausted, {skipped} skipped")
        return DispatchSweepResponse(
            results=results,
            assigned=assigned,
            exhausted=len(results) - assigned,
            skipped=skipped,
        )

    async def accept(self, ticket_id: str, rescuer_id: str) -> DispatchResult:
        """
        A rescuer takes a ticket directly, e.g. after a broadcast

        Several rescuers may answer the same broadcast; the first accept wins
        and the others get ConflictError naming the current holder.
        """
        ticket = await self.tickets.get(ticket_id)
        if ticket.status in HOLDING_STATUSES:
            raise ConflictError(
                error_code="TICKET_ALREADY_TAKEN",
                message=f"Ticket {ticket_id} is already taken by rescuer {ticket.assigned_rescuer_id}",
                details={"ticket_id": ticket_id, "status": ticket.status.value,
                         "assigned_rescuer_id": ticket.assigned_rescuer_id},
            )
        if ticket.status != TicketStatus.OPEN:
            raise InvalidStateError("Ticket", ticket_id, ticket.status.value, "accept")
        await self.rescuers.get(rescuer_id)

        assigned, rescuer = await self.scheduler.claim(ticket_id, rescuer_id)
        distance = haversine_distance(
            Location(lat=assigned.location.lat, lng=assigned.location.lng),
            Location(lat=rescuer.location.lat, lng=rescuer.location.lng),
        )
        logger.info(f"Ticket {ticket_id} accepted by rescuer {rescuer_id} ({distance:.2f}km away)")
        await deliver(
            self.notifier.notify_assignment(ticket_id, rescuer_id),
            f"assignment notice for {ticket_id}",
        )
        return DispatchResult(
            status=DispatchStatus.ASSIGNED,
            ticket=assigned,
            rescuer=rescuer,
            distance_km=round(distance, 2),
            attempts=1,
            message=f"{rescuer.name} accepted the ticket ({distance:.2f}km away)",
        )

    async def start(self, ticket_id: str) -> Ticket:
        """Rescuer reports on the way: ASSIGNED -> IN_PROGRESS"""
        return await self.tickets.mark_in_progress(ticket_id)

    async def cancel(self, ticket_id: str) -> Ticket:
        ticket = await self.tickets.cancel(ticket_id)
        # the assignee is cleared on cancel; find the holder by its mission instead.
        # a claim still in flight loses at ticket assign and compensates itself
        for rescuer in await self.rescuers.list(RescuerStatus.ON_MISSION):
            if rescuer.current_ticket_id == ticket_id:
                await self.rescuers.release(rescuer.rescuer_id, ticket_id=ticket_id, completed=False)
        return ticket

    async def stats(self) -> StatsResponse:
        tickets = await self.tickets.list()
        rescuers = await self.rescuers.list()

        def count(status: TicketStatus) -> int:
            return sum(1 for t in tickets if t.status == status)

        return StatsResponse(
            tickets=TicketStats(
                total=len(tickets),
                open=count(TicketStatus.OPEN),
                assigned=count(TicketStatus.ASSIGNED),
                in_progress=count(TicketStatus.IN_PROGRESS),
                verified=count(TicketStatus.VERIFIED),
                completed=count(TicketStatus.COMPLETED),
                cancelled=count(TicketStatus.CANCELLED),
            ),
            rescuers=RescuerStats(
                total=len(rescuers),
                available=sum(1 for r in rescuers if r.status in ELIGIBLE_STATUSES),
                on_mission=sum(1 for r in rescuers if r.status == RescuerStatus.ON_MISSION),
                offline=sum(1 for r in rescuers if r.status == RescuerStatus.OFFLINE),
            ),
        )
