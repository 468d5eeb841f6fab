"""
Booking endpoints. Every write goes through the reservation coordinator.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.models.booking import BookingStatus
from app.schemas.booking import (
    BookingCreate,
    BookingResponse,
    BookingListResponse,
    BookingCancelResponse,
    BookingStatusUpdate,
    BookingStatusResponse,
)
from app.services import booking_ledger
from app.services.reservation_service import ReservationCoordinator, get_coordinator
from app.services.cache_service import invalidate_workshop_cache
from app.core.exceptions import NotOwnerError
from app.core.security import Caller, get_current_caller, require_operator
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    caller: Caller = Depends(get_current_caller),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """
    Reserve one seat in a workshop slot.

    The seat decrement and the PENDING booking commit together. When the slot
    is full the request fails with 409 and nothing is written.
    """
    booking = await coordinator.reserve(caller.user_id, booking_data.workshop_id, booking_data.slot_id)
    # Remaining seats changed
    await invalidate_workshop_cache()
    return booking


@router.get("/me", response_model=list[BookingResponse])
async def list_my_bookings(
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the calling customer."""
    return await booking_ledger.list_for_customer(db, caller.user_id)


@router.put("/me/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel_my_booking(
    booking_id: int,
    caller: Caller = Depends(get_current_caller),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """Cancel one of the caller's bookings and release its seat."""
    booking = await coordinator.cancel(booking_id, caller.user_id, is_operator=caller.is_operator)
    await invalidate_workshop_cache()
    return BookingCancelResponse(
        message="Booking canceled successfully",
        booking_id=booking.id,
        status=booking.status,
    )


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Operator audit view. Shows PENDING and CONFIRMED bookings unless a status is given."""
    bookings, total = await booking_ledger.list_bookings(db, status_filter, page, page_size)
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    caller: Caller = Depends(get_current_caller),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    booking = await coordinator.get_booking(booking_id)
    if booking.customer_id != caller.user_id and not caller.is_operator:
        raise NotOwnerError("Booking not found")
    return booking


@router.put("/{booking_id}/status", response_model=BookingStatusResponse)
async def update_booking_status(
    booking_id: int,
    update: BookingStatusUpdate,
    caller: Caller = Depends(get_current_caller),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    """Operator status change: PENDING -> CONFIRMED, or cancel from either."""
    previous = await coordinator.set_status(booking_id, update.status, is_operator=caller.is_operator)
    if update.status is BookingStatus.CANCELED:
        await invalidate_workshop_cache()
    return BookingStatusResponse(
        message="Booking status updated",
        booking_id=booking_id,
        previous_status=previous,
        status=update.status,
    )
