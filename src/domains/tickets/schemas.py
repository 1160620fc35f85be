from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    VERIFIED = "VERIFIED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TicketSource(str, Enum):
    telegram_form = "telegram_form"
    telegram_forward = "telegram_forward"
    direct = "direct"


DEFAULT_PRIORITY = 3

# statuses in which a ticket holds its rescuer
HOLDING_STATUSES = frozenset({TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.VERIFIED})
# statuses considered "still being handled" by dedup
ACTIVE_STATUSES = frozenset({TicketStatus.OPEN, TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketLocation(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address_text: str = ""


class VictimInfo(BaseModel):
    phone: str = ""
    people_count: int = Field(1, ge=1)
    has_elderly: bool = False
    has_children: bool = False
    has_disabled: bool = False
    note: str = ""


class VerificationVerdict(BaseModel):
    """Output of the image-verification collaborator"""
    is_valid: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    metadata_valid: bool = False
    notes: str = ""


class VerificationResult(VerificationVerdict):
    """Verdict as recorded on the ticket"""
    verified_at: datetime = Field(default_factory=utcnow)


class TicketCreate(BaseModel):
    """Parsed payload from the intake/NLP collaborator"""
    location: TicketLocation
    victim_info: VictimInfo = Field(default_factory=VictimInfo)
    priority: int = DEFAULT_PRIORITY
    raw_message: str = ""
    source: TicketSource = TicketSource.direct

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, v):
        # the parser sends null when it could not rate the message
        if v is None:
            return DEFAULT_PRIORITY
        try:
            return max(1, min(5, int(v)))
        except (TypeError, ValueError):
            raise ValueError(f"priority must be a number between 1 and 5, got {v!r}")


class Ticket(BaseModel):
    ticket_id: str
    status: TicketStatus = TicketStatus.OPEN
    priority: int = Field(..., ge=1, le=5)
    location: TicketLocation
    victim_info: VictimInfo
    assigned_rescuer_id: Optional[str] = None
    raw_message: str = ""
    source: TicketSource = TicketSource.direct
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    verified_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    verification_result: Optional[VerificationResult] = None

    class Config:
        from_attributes = True


class TicketListResponse(BaseModel):
    items: list[Ticket]
    total: int


class IntakeAction(str, Enum):
    create = "create"
    merge = "merge"
    skip = "skip"


class IntakeResponse(BaseModel):
    action: IntakeAction
    ticket: Ticket
    message: str
    match_type: Optional[str] = None  # phone / location, set when the report was a duplicate
    dispatch: Optional[dict] = None
