from fastapi import APIRouter, Depends

from src.core.dependencies import get_dispatch_service
from .schemas import AcceptRequest, DispatchResult, DispatchSweepResponse, StatsResponse
from .service import DispatchService


router = APIRouter(prefix="/dispatch", tags=["dispatch"])


@router.post("/open", response_model=DispatchSweepResponse)
async def dispatch_open_tickets(
    service: DispatchService = Depends(get_dispatch_service),
):
    """Try to dispatch every OPEN ticket, highest priority first"""
    return await service.dispatch_open()


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    service: DispatchService = Depends(get_dispatch_service),
):
    return await service.stats()


@router.post("/{ticket_id}", response_model=DispatchResult)
async def dispatch_ticket(
    ticket_id: str,
    service: DispatchService = Depends(get_dispatch_service),
):
    """Find and assign the best rescuer; EXHAUSTED leaves the ticket OPEN"""
    return await service.dispatch(ticket_id)


@router.post("/{ticket_id}/accept", response_model=DispatchResult)
async def accept_ticket(
    ticket_id: str,
    data: AcceptRequest,
    service: DispatchService = Depends(get_dispatch_service),
):
    """Rescuer takes the ticket; 409 names the holder when someone was faster"""
    return await service.accept(ticket_id, data.rescuer_id)
