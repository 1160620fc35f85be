from pydantic import BaseModel
from typing import Optional
from enum import Enum

from src.domains.rescuers.schemas import Rescuer
from src.domains.tickets.schemas import Ticket


class DispatchStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    EXHAUSTED = "EXHAUSTED"


class DispatchResult(BaseModel):
    """Outcome of one scheduling attempt. EXHAUSTED is a normal outcome."""
    status: DispatchStatus
    ticket: Ticket
    rescuer: Optional[Rescuer] = None
    score: Optional[int] = None
    distance_km: Optional[float] = None
    radius_km: Optional[float] = None
    attempts: int = 0
    message: str = ""

    @property
    def assigned(self) -> bool:
        return self.status == DispatchStatus.ASSIGNED


class AcceptRequest(BaseModel):
    rescuer_id: str


class DispatchSweepResponse(BaseModel):
    results: list[DispatchResult]
    assigned: int
    exhausted: int
    skipped: int


class TicketStats(BaseModel):
    total: int
    open: int
    assigned: int
    in_progress: int
    verified: int
    completed: int
    cancelled: int


class RescuerStats(BaseModel):
    total: int
    available: int
    on_mission: int
    offline: int


class StatsResponse(BaseModel):
    tickets: TicketStats
    rescuers: RescuerStats
