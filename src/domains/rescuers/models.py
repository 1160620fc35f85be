"""
Rescuer ORM model

Table: rescuers
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column, String, Integer, BigInteger, Float, DateTime, CheckConstraint
)

from src.core.database import Base


class RescuerRecord(Base):
    """
    Rescuer row

    Business notes:
    - rescuers are never deleted; only status, location and counters change
    - current_ticket_id is set exactly while status is ON_MISSION
    """
    __tablename__ = "rescuers"
    __table_args__ = (
        CheckConstraint('rating >= 0 AND rating <= 5', name='chk_rescuer_rating'),
        CheckConstraint('vehicle_capacity >= 1', name='chk_rescuer_capacity'),
    )

    # ==================== Key ====================
    rescuer_id: str = Column(String(64), primary_key=True)

    # ==================== Profile ====================
    name: str = Column(String(200), nullable=False)
    phone: str = Column(String(32), nullable=False)
    vehicle_type: str = Column(String(20), nullable=False, comment="cano/boat/kayak/raft/other")
    vehicle_capacity: int = Column(Integer, nullable=False)
    wallet_address: Optional[str] = Column(String(64))
    telegram_user_id: Optional[int] = Column(BigInteger)
    telegram_chat_id: Optional[int] = Column(BigInteger)
    registration_status: str = Column(String(20), nullable=False, default="pending")

    # ==================== State ====================
    status: str = Column(
        String(20),
        nullable=False,
        default="OFFLINE",
        index=True,
        comment="ONLINE/OFFLINE/IDLE/BUSY/ON_MISSION"
    )
    current_ticket_id: Optional[str] = Column(String(64))
    rating: float = Column(Float, nullable=False, default=5.0)
    completed_missions: int = Column(Integer, nullable=False, default=0)

    # ==================== Location ====================
    lat: float = Column(Float, nullable=False)
    lng: float = Column(Float, nullable=False)
    location_updated_at: datetime = Column(DateTime(timezone=True), nullable=False)

    # ==================== Timestamps ====================
    created_at: datetime = Column(DateTime(timezone=True), nullable=False)
    updated_at: datetime = Column(DateTime(timezone=True), nullable=False)
    last_active_at: datetime = Column(DateTime(timezone=True), nullable=False)
