"""
Workshop endpoints with Redis caching on the public list.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.booking import BookingResponse
from app.schemas.workshop import (
    WorkshopCreate,
    WorkshopResponse,
    WorkshopListResponse,
    AdminWorkshopResponse,
    AdminWorkshopListResponse,
    WorkshopDetailResponse,
    SlotCreate,
    SlotResponse,
)
from app.services import workshop_service
from app.services.cache_service import get_cached_workshops, set_cached_workshops, invalidate_workshop_cache
from app.core.security import Caller, require_operator
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/workshops", tags=["Workshops"])


@router.post("/", response_model=WorkshopResponse, status_code=status.HTTP_201_CREATED)
async def create_workshop_endpoint(
    workshop_data: WorkshopCreate,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Create a workshop and its slots in one transaction. Operators only."""
    workshop = await workshop_service.create_workshop(db, workshop_data)
    await invalidate_workshop_cache()
    return workshop


@router.get("/", response_model=WorkshopListResponse)
async def list_workshops_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """
    Public workshop list, excluding soft-deleted workshops and full slots.
    Cached in Redis; seat counts shown here may lag slightly behind bookings.
    """
    cached = await get_cached_workshops(page, page_size, upcoming_only)
    if cached:
        logger.info("workshops_list_cache_hit", page=page)
        cached["cached"] = True
        return WorkshopListResponse(**cached)

    workshops, total = await workshop_service.list_workshops(
        db, page, page_size, upcoming_only, available_slots_only=True
    )

    response_data = {
        "workshops": [WorkshopResponse.model_validate(w).model_dump(mode="json") for w in workshops],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_workshops(page, page_size, upcoming_only, response_data)

    return WorkshopListResponse(**response_data)


@router.get("/admin", response_model=AdminWorkshopListResponse)
async def list_admin_workshops_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """
    Operator view: every workshop, past and soft-deleted included, newest
    first, with booking counts. Never cached.
    """
    workshops, total = await workshop_service.list_workshops(
        db, page, page_size, upcoming_only=False, include_deleted=True, newest_first=True
    )
    counts = await workshop_service.count_bookings(db, [w.id for w in workshops])

    return AdminWorkshopListResponse(
        workshops=[
            AdminWorkshopResponse(
                **WorkshopResponse.model_validate(w).model_dump(),
                booking_count=counts[w.id][0],
                active_booking_count=counts[w.id][1],
            )
            for w in workshops
        ],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/admin/{workshop_id}", response_model=WorkshopDetailResponse)
async def get_admin_workshop_endpoint(
    workshop_id: int,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Operator view of one workshop, even if soft-deleted, with its active bookings."""
    workshop = await workshop_service.get_workshop(db, workshop_id, include_deleted=True)
    bookings = await workshop_service.list_active_bookings(db, workshop_id)
    return WorkshopDetailResponse(
        **WorkshopResponse.model_validate(workshop).model_dump(),
        bookings=[BookingResponse.model_validate(b) for b in bookings],
    )


@router.get("/{workshop_id}", response_model=WorkshopResponse)
async def get_workshop_endpoint(
    workshop_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single workshop with its slots. Not cached."""
    return await workshop_service.get_workshop(db, workshop_id)


@router.delete("/{workshop_id}", response_model=WorkshopResponse)
async def soft_delete_workshop_endpoint(
    workshop_id: int,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Hide a workshop from the public list and stop new reservations."""
    workshop = await workshop_service.soft_delete_workshop(db, workshop_id)
    await invalidate_workshop_cache()
    return workshop


@router.post("/{workshop_id}/restore", response_model=WorkshopResponse)
async def restore_workshop_endpoint(
    workshop_id: int,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    workshop = await workshop_service.restore_workshop(db, workshop_id)
    await invalidate_workshop_cache()
    return workshop


@router.post("/{workshop_id}/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def add_slot_endpoint(
    workshop_id: int,
    slot_data: SlotCreate,
    caller: Caller = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    slot = await workshop_service.add_slot(db, workshop_id, slot_data)
    await invalidate_workshop_cache()
    return slot
