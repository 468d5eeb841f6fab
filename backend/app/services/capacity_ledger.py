"""
Capacity ledger: the per-slot remaining-seats counter.

Every mutation is a single conditional UPDATE executed on the caller's
session, so it commits or rolls back together with the booking write made in
the same unit of work. The ledger never commits on its own.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.workshop import Slot, Workshop
from app.core.exceptions import SlotNotFoundError
from app.core.logging import get_logger

logger = get_logger(__name__)


async def lock_slot(db: AsyncSession, slot_id: int) -> Optional[Slot]:
    """
    Load the slot row with SELECT ... FOR UPDATE.

    Held until the transaction ends; concurrent reservations, cancellations
    and slot deletions on the same slot queue here. Other slots are unaffected.
    """
    result = await db.execute(
        select(Slot)
        .where(Slot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def try_decrement(db: AsyncSession, slot_id: int) -> bool:
    """Take one seat. Returns False, changing nothing, if none is left."""
    result = await db.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.remaining_seats > 0)
        .values(remaining_seats=Slot.remaining_seats - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def increment(db: AsyncSession, slot_id: int) -> None:
    """Give one seat back, never exceeding the workshop capacity."""
    capacity = (
        select(Workshop.capacity)
        .where(Workshop.id == Slot.workshop_id)
        .correlate(Slot)
        .scalar_subquery()
    )
    result = await db.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.remaining_seats < capacity)
        .values(remaining_seats=Slot.remaining_seats + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    if await get_remaining_seats(db, slot_id) is None:
        raise SlotNotFoundError()
    logger.warning("capacity_increment_clamped", slot_id=slot_id)


async def get_remaining_seats(db: AsyncSession, slot_id: int) -> Optional[int]:
    result = await db.execute(select(Slot.remaining_seats).where(Slot.id == slot_id))
    return result.scalar_one_or_none()
