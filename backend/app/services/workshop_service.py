"""
Workshop catalogue: operator CRUD for workshops and their slots.

Slots are created with remaining_seats = workshop capacity. After that only
the reservation coordinator changes the counter; nothing here touches it.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, func, delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.workshop import Workshop, Slot
from app.models.booking import Booking, ACTIVE_STATUSES
from app.schemas.workshop import WorkshopCreate, SlotCreate, SlotUpdate
from app.services import capacity_ledger
from app.db.session import begin_write
from app.core.exceptions import WorkshopNotFoundError, SlotNotFoundError, SlotInUseError
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_workshop(db: AsyncSession, workshop_data: WorkshopCreate) -> Workshop:
    """Create a workshop together with its initial slots, all fully available."""
    await begin_write(db)
    workshop = Workshop(
        title=workshop_data.title,
        description=workshop_data.description,
        date=workshop_data.date,
        capacity=workshop_data.capacity,
        slots=[
            Slot(
                start_time=slot.start_time,
                end_time=slot.end_time,
                remaining_seats=workshop_data.capacity,
            )
            for slot in workshop_data.slots
        ],
    )
    db.add(workshop)
    await db.flush()

    logger.info(
        "workshop_created",
        workshop_id=workshop.id,
        title=workshop.title,
        capacity=workshop.capacity,
        slots=len(workshop_data.slots),
    )
    return await get_workshop(db, workshop.id, include_deleted=True)


async def get_workshop(db: AsyncSession, workshop_id: int, include_deleted: bool = False) -> Workshop:
    result = await db.execute(
        select(Workshop)
        .options(selectinload(Workshop.slots))
        .where(Workshop.id == workshop_id)
        .execution_options(populate_existing=True)
    )
    workshop = result.scalar_one_or_none()

    if not workshop or (workshop.is_deleted and not include_deleted):
        raise WorkshopNotFoundError(f"Workshop {workshop_id} not found")
    return workshop


async def list_workshops(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
    include_deleted: bool = False,
    available_slots_only: bool = False,
    newest_first: bool = False,
) -> tuple[list[Workshop], int]:
    """
    List workshops with pagination.

    The public view hides soft-deleted and past workshops and the slots with
    no seat left, ordered by date. The operator view shows everything, most
    recently created first.
    """
    query = select(Workshop)

    if not include_deleted:
        query = query.where(Workshop.deleted_at.is_(None))
    if upcoming_only:
        query = query.where(Workshop.date >= datetime.now(timezone.utc))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    slots = Workshop.slots.and_(Slot.remaining_seats > 0) if available_slots_only else Workshop.slots
    if newest_first:
        order = (Workshop.created_at.desc(), Workshop.id.desc())
    else:
        order = (Workshop.date.asc(), Workshop.id.asc())

    result = await db.execute(
        query
        .options(selectinload(slots))
        .order_by(*order)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all()), total


async def count_bookings(db: AsyncSession, workshop_ids: list[int]) -> dict[int, tuple[int, int]]:
    """Map workshop id -> (all bookings, active bookings)."""
    if not workshop_ids:
        return {}

    active = func.count().filter(Booking.status.in_(ACTIVE_STATUSES))
    result = await db.execute(
        select(Booking.workshop_id, func.count(), active)
        .where(Booking.workshop_id.in_(workshop_ids), Booking.deleted_at.is_(None))
        .group_by(Booking.workshop_id)
    )
    counts = {workshop_id: (0, 0) for workshop_id in workshop_ids}
    for workshop_id, total, active_total in result.all():
        counts[workshop_id] = (total, active_total)
    return counts


async def list_active_bookings(db: AsyncSession, workshop_id: int) -> list[Booking]:
    """Non-canceled bookings of a workshop, newest first."""
    result = await db.execute(
        select(Booking)
        .where(
            Booking.workshop_id == workshop_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.deleted_at.is_(None),
        )
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def soft_delete_workshop(db: AsyncSession, workshop_id: int) -> Workshop:
    await begin_write(db)
    workshop = await get_workshop(db, workshop_id, include_deleted=True)
    if workshop.deleted_at is None:
        workshop.deleted_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("workshop_soft_deleted", workshop_id=workshop_id)
    return await get_workshop(db, workshop_id, include_deleted=True)


async def restore_workshop(db: AsyncSession, workshop_id: int) -> Workshop:
    await begin_write(db)
    workshop = await get_workshop(db, workshop_id, include_deleted=True)
    if workshop.deleted_at is not None:
        workshop.deleted_at = None
        await db.flush()
        logger.info("workshop_restored", workshop_id=workshop_id)
    return await get_workshop(db, workshop_id, include_deleted=True)


async def add_slot(db: AsyncSession, workshop_id: int, slot_data: SlotCreate) -> Slot:
    """Add a slot to an existing workshop. Remaining seats default to capacity."""
    await begin_write(db)
    workshop = await get_workshop(db, workshop_id)

    slot = Slot(
        workshop_id=workshop.id,
        start_time=slot_data.start_time,
        end_time=slot_data.end_time,
        remaining_seats=workshop.capacity,
    )
    db.add(slot)
    await db.flush()
    await db.refresh(slot)

    logger.info("slot_created", slot_id=slot.id, workshop_id=workshop_id, seats=slot.remaining_seats)
    return slot


async def update_slot(db: AsyncSession, slot_id: int, slot_data: SlotUpdate) -> Slot:
    """Relabel a slot. Only start/end labels change; remaining_seats is never written."""
    await begin_write(db)
    changes = slot_data.model_dump(exclude_unset=True, exclude_none=True)

    if changes:
        result = await db.execute(
            update(Slot)
            .where(Slot.id == slot_id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SlotNotFoundError()
        logger.info("slot_updated", slot_id=slot_id, fields=sorted(changes))

    slot = await _get_slot(db, slot_id)
    if slot is None:
        raise SlotNotFoundError()
    return slot


async def _get_slot(db: AsyncSession, slot_id: int) -> Optional[Slot]:
    result = await db.execute(
        select(Slot).where(Slot.id == slot_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def delete_slot(db: AsyncSession, slot_id: int) -> None:
    """
    Delete a slot that no active booking references.
    The slot row is locked first so a concurrent reservation cannot slip in.
    """
    await begin_write(db)
    slot = await capacity_ledger.lock_slot(db, slot_id)
    if slot is None:
        raise SlotNotFoundError()

    active = await db.execute(
        select(func.count())
        .select_from(Booking)
        .where(Booking.slot_id == slot_id, Booking.status.in_(ACTIVE_STATUSES))
    )
    if active.scalar() > 0:
        logger.warning("slot_delete_refused", slot_id=slot_id, reason="active_bookings")
        raise SlotInUseError()

    await db.execute(delete(Slot).where(Slot.id == slot_id))
    logger.info("slot_deleted", slot_id=slot_id)
