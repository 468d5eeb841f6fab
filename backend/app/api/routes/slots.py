"""
Slot endpoints: live availability, operator relabeling and deletion.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.workshop import SlotAvailabilityResponse, SlotResponse, SlotUpdate
from app.services import workshop_service
from app.services.reservation_service import ReservationCoordinator, get_coordinator
from app.services.cache_service import invalidate_workshop_cache
from app.core.security import Caller, require_operator

router = APIRouter(prefix="/slots", tags=["Slots"])


@router.get("/{slot_id}/availability", response_model=SlotAvailabilityResponse)
async def get_slot_availability(
    slot_id: int,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """Remaining seats read straight from the database (never cached)."""
    remaining = await coordinator.get_slot_availability(slot_id)
    return SlotAvailabilityResponse(slot_id=slot_id, remaining_seats=remaining)


@router.put("/{slot_id}", response_model=SlotResponse)
async def update_slot(
    slot_id: int,
    slot_data: SlotUpdate,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Change a slot's start/end labels. Seat counts cannot be edited here."""
    slot = await workshop_service.update_slot(db, slot_id, slot_data)
    await invalidate_workshop_cache()
    return slot


@router.delete("/{slot_id}")
async def delete_slot(
    slot_id: int,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Delete a slot. Refused with 409 while any active booking references it."""
    await workshop_service.delete_slot(db, slot_id)
    await invalidate_workshop_cache()
    return {"message": "Time slot deleted successfully", "slot_id": slot_id}
