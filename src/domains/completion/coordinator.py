"""
Verification / completion coordinator

complete() touches two registries. Ordering is what keeps them consistent:

    mark_verified -> release rescuer (mission credit, keyed by ticket) -> mark_completed

Stopping anywhere in between leaves "VERIFIED, rescuer ON_MISSION" or
"VERIFIED, rescuer IDLE". Both are re-driven by calling complete() again;
the release is a no-op the second time, so the mission is credited once.
Only the call that moves the ticket to COMPLETED requests the payout and
sends the completion notice, so workers sharing one store pay once.
"COMPLETED while the rescuer is still ON_MISSION" never exists.
"""

from __future__ import annotations

import logging
from typing import Optional

from src.core.exceptions import ConflictError, InvalidStateError, VerificationFailedError
from src.domains.rescuers.registry import RescuerRegistry
from src.domains.rescuers.schemas import Rescuer
from src.domains.tickets.registry import TicketRegistry
from src.domains.tickets.schemas import (
    Ticket, TicketStatus, VerificationResult, VerificationVerdict,
)
from src.infra.clients.notifier import Notifier, deliver
from src.infra.clients.payout import PayoutClient, PayoutRequest
from src.infra.config.dispatch_policy import DispatchPolicy
from .rewards import compute_reward
from .schemas import CompletionResponse


logger = logging.getLogger(__name__)

COMPLETABLE_STATUSES = frozenset({TicketStatus.IN_PROGRESS, TicketStatus.VERIFIED})


class CompletionCoordinator:
    def __init__(
        self,
        tickets: TicketRegistry,
        rescuers: RescuerRegistry,
        notifier: Notifier,
        payout: PayoutClient,
        policy: DispatchPolicy,
    ) -> None:
        self.tickets = tickets
        self.rescuers = rescuers
        self.notifier = notifier
        self.payout = payout
        self.policy = policy
        self._in_flight: set[str] = set()

    def is_accepted(self, verdict: VerificationVerdict) -> bool:
        return verdict.is_valid and verdict.confidence >= self.policy.verification.min_confidence

    def _check_verdict(self, ticket_id: str, verdict: VerificationVerdict) -> VerificationResult:
        if not self.is_accepted(verdict):
            logger.warning(
                f"Ticket {ticket_id}: verification rejected "
                f"(valid={verdict.is_valid}, confidence={verdict.confidence:.2f})"
            )
            raise VerificationFailedError(
                ticket_id,
                verdict.confidence,
                self.policy.verification.min_confidence,
                verdict.notes,
            )
        return VerificationResult(**verdict.model_dump())

    async def verify(self, ticket_id: str, verdict: VerificationVerdict) -> Ticket:
        """IN_PROGRESS -> VERIFIED when the proof is accepted; ticket untouched otherwise."""
        ticket = await self.tickets.get(ticket_id)
        if ticket.status == TicketStatus.VERIFIED:
            return ticket
        if ticket.status != TicketStatus.IN_PROGRESS:
            raise InvalidStateError("Ticket", ticket_id, ticket.status.value, "verify")
        result = self._check_verdict(ticket_id, verdict)
        return await self.tickets.mark_verified(ticket_id, result)

    async def complete(self, ticket_id: str, verdict: VerificationVerdict) -> CompletionResponse:
        ticket = await self.tickets.get(ticket_id)
        if ticket.status == TicketStatus.COMPLETED:
            logger.info(f"Ticket {ticket_id} already COMPLETED, nothing to do")
            return CompletionResponse(ticket=ticket, already_completed=True)
        if ticket.status not in COMPLETABLE_STATUSES:
            raise InvalidStateError("Ticket", ticket_id, ticket.status.value, "complete")
        result = self._check_verdict(ticket_id, verdict)

        if ticket_id in self._in_flight:
            raise ConflictError(
                error_code="COMPLETION_IN_FLIGHT",
                message=f"Completion of ticket {ticket_id} is already running",
            )
        self._in_flight.add(ticket_id)
        try:
            return await self._complete(ticket, result)
        finally:
            self._in_flight.discard(ticket_id)

    async def _complete(self, ticket: Ticket, result: VerificationResult) -> CompletionResponse:
        ticket_id = ticket.ticket_id
        rescuer_id = ticket.assigned_rescuer_id

        await self.tickets.mark_verified(ticket_id, result)
        rescuer: Optional[Rescuer] = None
        if rescuer_id:
            rescuer = await self.rescuers.release(rescuer_id, ticket_id=ticket_id, completed=True)
        else:
            logger.warning(f"Ticket {ticket_id} has no assigned rescuer; completing without mission credit")
        completed, transitioned = await self.tickets.mark_completed(ticket_id)
        if not transitioned:
            # another worker sharing the store finished first and owns payout and notice
            logger.info(f"Ticket {ticket_id} was completed concurrently, skipping payout")
            return CompletionResponse(ticket=completed, rescuer=rescuer, already_completed=True)

        response = CompletionResponse(ticket=completed, rescuer=rescuer)
        if rescuer is not None:
            amount = compute_reward(completed, self.policy.reward)
            response.reward_amount = amount
            response.currency = self.policy.reward.currency
            response.payout_requested = await deliver(
                self.payout.request_payout(PayoutRequest(
                    ticket_id=ticket_id,
                    rescuer_id=rescuer.rescuer_id,
                    wallet_address=rescuer.wallet_address,
                    amount=amount,
                    currency=self.policy.reward.currency,
                )),
                f"payout for {ticket_id}",
            )
        await deliver(self.notifier.notify_completion(ticket_id), f"completion notice for {ticket_id}")

        logger.info(f"Ticket {ticket_id} completed by {rescuer_id}, reward={response.reward_amount}")
        return response
