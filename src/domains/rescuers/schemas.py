from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

from src.domains.tickets.schemas import utcnow


class RescuerStatus(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    IDLE = "IDLE"
    BUSY = "BUSY"
    ON_MISSION = "ON_MISSION"


class VehicleType(str, Enum):
    cano = "cano"
    boat = "boat"
    kayak = "kayak"
    raft = "raft"
    other = "other"


class RegistrationStatus(str, Enum):
    pending = "pending"
    verified = "verified"
    active = "active"
    suspended = "suspended"


ELIGIBLE_STATUSES = frozenset({RescuerStatus.ONLINE, RescuerStatus.IDLE})

MAX_RATING = 5.0


class RescuerLocation(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    last_updated: datetime = Field(default_factory=utcnow)


class RescuerCreate(BaseModel):
    """Output of the registration flow"""
    name: str = Field(..., max_length=200)
    phone: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    vehicle_type: VehicleType
    vehicle_capacity: int = Field(..., ge=1)
    wallet_address: Optional[str] = None
    telegram_user_id: Optional[int] = None
    telegram_chat_id: Optional[int] = None
    registration_status: RegistrationStatus = RegistrationStatus.pending


class Rescuer(BaseModel):
    rescuer_id: str
    name: str
    phone: str
    status: RescuerStatus = RescuerStatus.OFFLINE
    location: RescuerLocation
    vehicle_type: VehicleType
    vehicle_capacity: int = Field(..., ge=1)
    wallet_address: Optional[str] = None
    rating: float = Field(MAX_RATING, ge=0.0, le=MAX_RATING)
    completed_missions: int = Field(0, ge=0)
    telegram_user_id: Optional[int] = None
    telegram_chat_id: Optional[int] = None
    registration_status: RegistrationStatus = RegistrationStatus.pending
    current_ticket_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True


class RescuerListResponse(BaseModel):
    items: list[Rescuer]
    total: int


class RescuerStatusUpdate(BaseModel):
    """Availability toggle (/online, /offline)"""
    status: RescuerStatus


class RescuerLocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RescuerRatingUpdate(BaseModel):
    rating: float
