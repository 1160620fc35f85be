from fastapi import APIRouter, Depends
from typing import Optional

from src.core.dependencies import get_rescuer_registry
from .registry import RescuerRegistry
from .schemas import (
    Rescuer, RescuerCreate, RescuerListResponse, RescuerLocationUpdate,
    RescuerRatingUpdate, RescuerStatus, RescuerStatusUpdate,
)


router = APIRouter(prefix="/rescuers", tags=["rescuers"])


@router.post("", response_model=Rescuer, status_code=201)
async def register_rescuer(
    data: RescuerCreate,
    registry: RescuerRegistry = Depends(get_rescuer_registry),
):
    """Register a rescuer (starts OFFLINE)"""
    return await registry.register(data)


@router.get("", response_model=RescuerListResponse)
async def list_rescuers(
    status: Optional[RescuerStatus] = None,
    registry: RescuerRegistry = Depends(get_rescuer_registry),
):
    items = await registry.list(status)
    return RescuerListResponse(items=items, total=len(items))


@router.get("/{rescuer_id}", response_model=Rescuer)
async def get_rescuer(
    rescuer_id: str,
    registry: RescuerRegistry = Depends(get_rescuer_registry),
):
    return await registry.get(rescuer_id)


@router.post("/{rescuer_id}/status", response_model=Rescuer)
async def set_rescuer_status(
    rescuer_id: str,
    data: RescuerStatusUpdate,
    registry: RescuerRegistry = Depends(get_rescuer_registry),
):
    """Go online / offline / idle / busy. ON_MISSION is set by dispatch only."""
    return await registry.set_status(rescuer_id, data.status)


@router.put("/{rescuer_id}/location", response_model=Rescuer)
async def update_rescuer_location(
    rescuer_id: str,
    data: RescuerLocationUpdate,
    registry: RescuerRegistry = Depends(get_rescuer_registry),
):
    return await registry.update_location(rescuer_id, data.lat, data.lng)


@router.put("/{rescuer_id}/rating", response_model=Rescuer)
async def update_rescuer_rating(
    rescuer_id: str,
    data: RescuerRatingUpdate,
    registry: RescuerRegistry = Depends(get_rescuer_registry),
):
    """Rating is clamped to [0, 5]"""
    return await registry.update_rating(rescuer_id, data.rating)
