from fastapi import APIRouter, Depends

from src.core.dependencies import get_completion_coordinator
from src.domains.tickets.schemas import Ticket, VerificationVerdict
from .coordinator import CompletionCoordinator
from .schemas import CompletionResponse


router = APIRouter(prefix="/completion", tags=["completion"])


@router.post("/{ticket_id}/verify", response_model=Ticket)
async def verify_ticket(
    ticket_id: str,
    verdict: VerificationVerdict,
    coordinator: CompletionCoordinator = Depends(get_completion_coordinator),
):
    """Record the proof-of-rescue verdict (422 when rejected)"""
    return await coordinator.verify(ticket_id, verdict)


@router.post("/{ticket_id}/complete", response_model=CompletionResponse)
async def complete_ticket(
    ticket_id: str,
    verdict: VerificationVerdict,
    coordinator: CompletionCoordinator = Depends(get_completion_coordinator),
):
    """Verify, free the rescuer, complete, request payout. Safe to repeat."""
    return await coordinator.complete(ticket_id, verdict)
