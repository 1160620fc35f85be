"""
Rescue ticket ORM model

Table: rescue_tickets
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text, JSON, CheckConstraint
)

from src.core.database import Base


class RescueTicketRecord(Base):
    """
    Rescue ticket row

    Terminal tickets (COMPLETED, CANCELLED) are never deleted; they are the
    audit trail.
    """
    __tablename__ = "rescue_tickets"
    __table_args__ = (
        CheckConstraint('priority >= 1 AND priority <= 5', name='chk_ticket_priority'),
    )

    # ==================== Key ====================
    ticket_id: str = Column(String(64), primary_key=True)

    # ==================== State ====================
    status: str = Column(
        String(20),
        nullable=False,
        default="OPEN",
        index=True,
        comment="OPEN/ASSIGNED/IN_PROGRESS/VERIFIED/COMPLETED/CANCELLED"
    )
    priority: int = Column(Integer, nullable=False, default=3)
    assigned_rescuer_id: Optional[str] = Column(String(64), index=True)

    # ==================== Location ====================
    lat: float = Column(Float, nullable=False)
    lng: float = Column(Float, nullable=False)
    address_text: str = Column(String(500), nullable=False, default="")

    # ==================== Victims ====================
    phone: str = Column(String(32), nullable=False, default="", index=True)
    people_count: int = Column(Integer, nullable=False, default=1)
    has_elderly: bool = Column(Boolean, nullable=False, default=False)
    has_children: bool = Column(Boolean, nullable=False, default=False)
    has_disabled: bool = Column(Boolean, nullable=False, default=False)
    note: str = Column(Text, nullable=False, default="")

    # ==================== Source ====================
    raw_message: str = Column(Text, nullable=False, default="")
    source: str = Column(String(32), nullable=False, default="direct")

    # ==================== Verification ====================
    verification_result: Optional[dict[str, Any]] = Column(JSON)

    # ==================== Timestamps ====================
    created_at: datetime = Column(DateTime(timezone=True), nullable=False)
    updated_at: datetime = Column(DateTime(timezone=True), nullable=False)
    verified_at: Optional[datetime] = Column(DateTime(timezone=True))
    completed_at: Optional[datetime] = Column(DateTime(timezone=True))
