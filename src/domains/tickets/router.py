from fastapi import APIRouter, Depends
from typing import Optional

from src.core.dependencies import get_dispatch_service, get_intake_service, get_ticket_registry
from src.domains.dispatch.service import DispatchService
from .intake import IntakeService
from .registry import TicketRegistry
from .schemas import IntakeResponse, Ticket, TicketCreate, TicketListResponse, TicketStatus


router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=IntakeResponse, status_code=201)
async def submit_ticket(
    data: TicketCreate,
    service: IntakeService = Depends(get_intake_service),
):
    """Submit a parsed SOS report (deduplicated, optionally auto-dispatched)"""
    return await service.submit(data)


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    status: Optional[TicketStatus] = None,
    registry: TicketRegistry = Depends(get_ticket_registry),
):
    items = await registry.list(status)
    items.sort(key=lambda t: t.created_at, reverse=True)
    return TicketListResponse(items=items, total=len(items))


@router.get("/{ticket_id}", response_model=Ticket)
async def get_ticket(
    ticket_id: str,
    registry: TicketRegistry = Depends(get_ticket_registry),
):
    return await registry.get(ticket_id)


@router.post("/{ticket_id}/start", response_model=Ticket)
async def start_ticket(
    ticket_id: str,
    service: DispatchService = Depends(get_dispatch_service),
):
    """Rescuer accepted and is on the way"""
    return await service.start(ticket_id)


@router.post("/{ticket_id}/cancel", response_model=Ticket)
async def cancel_ticket(
    ticket_id: str,
    service: DispatchService = Depends(get_dispatch_service),
):
    """Cancel an OPEN or ASSIGNED ticket; frees the rescuer"""
    return await service.cancel(ticket_id)
