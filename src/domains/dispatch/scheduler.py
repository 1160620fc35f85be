"""
Dispatch Scheduler

Matches one OPEN ticket to one rescuer:

1. walk the radius ladder (5 -> 10 -> 15 km by default)
2. at each tier: candidates with capacity >= people_count, ranked by score
3. claim the best candidate: rescuer ON_MISSION first, then ticket ASSIGNED
   (the same unit serves a rescuer accepting a ticket directly)
   - rescuer claim lost (ConflictError): try the next candidate
   - ticket assign failed: release the rescuer, re-raise
4. nothing claimed after the last tier: EXHAUSTED, ticket stays OPEN

The scheduler keeps no persistent state. The only thing it remembers is
which tickets have an attempt in flight in this process, so a ticket never
has two concurrent attempts.
"""

from __future__ import annotations

import logging
from typing import Optional

from src.core.exceptions import AppException, ConflictError, InvalidStateError
from src.domains.rescuers.registry import RescuerRegistry
from src.domains.rescuers.schemas import Rescuer
from src.domains.tickets.registry import TicketRegistry
from src.domains.tickets.schemas import Ticket, TicketStatus
from src.infra.config.dispatch_policy import DispatchPolicy
from src.planning.algorithms.base import Location
from src.planning.algorithms.matching import RankedCandidate, ScoringContext, rank, score_components
from .candidate_finder import CandidateFinder
from .schemas import DispatchResult, DispatchStatus


logger = logging.getLogger(__name__)


class DispatchScheduler:
    def __init__(
        self,
        tickets: TicketRegistry,
        rescuers: RescuerRegistry,
        policy: DispatchPolicy,
    ) -> None:
        self._tickets = tickets
        self._rescuers = rescuers
        self._policy = policy
        self._finder = CandidateFinder(rescuers)
        self._in_flight: set[str] = set()

    async def dispatch(self, ticket_id: str) -> DispatchResult:
        ticket = await self._tickets.get(ticket_id)
        if ticket.status != TicketStatus.OPEN:
            raise InvalidStateError("Ticket", ticket_id, ticket.status.value, "dispatch")

        # check-and-add has no await in between, so it is atomic on the event loop
        if ticket_id in self._in_flight:
            raise ConflictError(
                error_code="DISPATCH_IN_FLIGHT",
                message=f"A dispatch attempt for ticket {ticket_id} is already running",
            )
        self._in_flight.add(ticket_id)
        try:
            return await self._run_ladder(ticket)
        finally:
            self._in_flight.discard(ticket_id)

    async def _run_ladder(self, ticket: Ticket) -> DispatchResult:
        center = Location(lat=ticket.location.lat, lng=ticket.location.lng)
        context = ScoringContext.from_ticket(ticket, self._policy.scoring)
        tried: set[str] = set()
        attempts = 0

        for radius in self._policy.radius_ladder_km:
            candidates = await self._finder.find_candidates(
                center, radius, min_capacity=ticket.victim_info.people_count,
            )
            ranked = [
                r for r in rank(candidates, context, self._policy.scoring)
                if r.candidate.rescuer_id not in tried
            ]
            if not ranked:
                logger.info(f"Ticket {ticket.ticket_id}: no candidates within {radius}km")
                continue

            logger.info(
                f"Ticket {ticket.ticket_id}: {len(ranked)} candidates within {radius}km, "
                f"best {ranked[0].candidate.rescuer_id} (score {ranked[0].score})"
            )
            for choice in ranked:
                tried.add(choice.candidate.rescuer_id)
                attempts += 1
                result = await self._try_claim(ticket, choice, radius, attempts, context)
                if result is not None:
                    return result

        logger.warning(
            f"Ticket {ticket.ticket_id}: exhausted radius ladder {self._policy.radius_ladder_km} "
            f"after {attempts} claim attempts"
        )
        return DispatchResult(
            status=DispatchStatus.EXHAUSTED,
            ticket=await self._tickets.get(ticket.ticket_id),
            radius_km=self._policy.max_radius_km,
            attempts=attempts,
            message=f"No rescuer available within {self._policy.max_radius_km}km",
        )

    async def claim(self, ticket_id: str, rescuer_id: str) -> tuple[Ticket, Rescuer]:
        """
        Claim rescuer then ticket as one unit

        ConflictError from the rescuer claim leaves nothing to undo. If the
        ticket assign fails the rescuer is released again and the error
        is re-raised.
        """
        rescuer = await self._rescuers.transition_to_mission(rescuer_id, ticket_id)
        return await self._assign_or_compensate(ticket_id, rescuer_id), rescuer

    async def _assign_or_compensate(self, ticket_id: str, rescuer_id: str) -> Ticket:
        try:
            return await self._tickets.assign(ticket_id, rescuer_id)
        except AppException:
            await self._compensate(rescuer_id, ticket_id)
            raise
        except Exception:
            logger.exception(f"Ticket {ticket_id}: assign failed unexpectedly, releasing {rescuer_id}")
            await self._compensate(rescuer_id, ticket_id)
            raise

    async def _try_claim(
        self,
        ticket: Ticket,
        choice: RankedCandidate,
        radius: float,
        attempts: int,
        context: ScoringContext,
    ) -> Optional[DispatchResult]:
        """None means: try the next candidate."""
        rescuer_id = choice.candidate.rescuer_id
        try:
            rescuer = await self._rescuers.transition_to_mission(rescuer_id, ticket.ticket_id)
        except ConflictError as e:
            logger.warning(f"Ticket {ticket.ticket_id}: lost rescuer {rescuer_id} to another dispatch ({e.message})")
            return None
        assigned = await self._assign_or_compensate(ticket.ticket_id, rescuer_id)

        components = score_components(rescuer, choice.distance_km, context, self._policy.scoring)
        logger.info(
            f"Ticket {ticket.ticket_id} -> rescuer {rescuer_id}: score={choice.score}, "
            f"distance={choice.distance_km:.2f}km, radius={radius}km, components={components}"
        )
        return DispatchResult(
            status=DispatchStatus.ASSIGNED,
            ticket=assigned,
            rescuer=rescuer,
            score=choice.score,
            distance_km=round(choice.distance_km, 2),
            radius_km=radius,
            attempts=attempts,
            message=f"Assigned {rescuer.name} ({choice.distance_km:.2f}km away)",
        )

    async def _compensate(self, rescuer_id: str, ticket_id: str) -> None:
        await self._rescuers.release(rescuer_id, ticket_id=ticket_id, completed=False)
        logger.warning(f"Compensated claim: rescuer {rescuer_id} released after ticket {ticket_id} assign failed")
