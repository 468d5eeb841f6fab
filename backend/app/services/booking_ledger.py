"""
Booking ledger: booking rows and their lifecycle state.

Writes (`insert`, `set_status`) run on the coordinator's session inside its
unit of work. The list functions are plain lock-free reads.
"""

from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.booking import Booking, BookingStatus, ACTIVE_STATUSES
from app.core.exceptions import BookingNotFoundError


async def insert(db: AsyncSession, customer_id: int, workshop_id: int, slot_id: int) -> Booking:
    booking = Booking(
        customer_id=customer_id,
        workshop_id=workshop_id,
        slot_id=slot_id,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    await db.flush()
    await db.refresh(booking)
    return booking


async def find_active(db: AsyncSession, customer_id: int, slot_id: int) -> Optional[Booking]:
    """The customer's non-canceled booking for this slot, if any."""
    result = await db.execute(
        select(Booking).where(
            Booking.customer_id == customer_id,
            Booking.slot_id == slot_id,
            Booking.status != BookingStatus.CANCELED,
        )
    )
    return result.scalars().first()


async def get(db: AsyncSession, booking_id: int, for_update: bool = False) -> Optional[Booking]:
    return await db.get(
        Booking,
        booking_id,
        with_for_update=for_update or None,
        populate_existing=for_update,
    )


async def set_status(db: AsyncSession, booking_id: int, new_status: BookingStatus) -> BookingStatus:
    """Write the new status and return the one it replaced."""
    booking = await get(db, booking_id)
    if booking is None:
        raise BookingNotFoundError()

    previous = booking.status
    booking.status = new_status
    await db.flush()
    await db.refresh(booking)
    return previous


async def list_for_customer(db: AsyncSession, customer_id: int) -> list[Booking]:
    """All of a customer's bookings, newest first."""
    result = await db.execute(
        select(Booking)
        .where(Booking.customer_id == customer_id, Booking.deleted_at.is_(None))
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def list_bookings(
    db: AsyncSession,
    status: Optional[BookingStatus] = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Booking], int]:
    """
    Operator audit listing with pagination.
    Without a status filter only active (PENDING, CONFIRMED) bookings are shown.
    """
    query = select(Booking).where(Booking.deleted_at.is_(None))
    if status is not None:
        query = query.where(Booking.status == status)
    else:
        query = query.where(Booking.status.in_(ACTIVE_STATUSES))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    result = await db.execute(
        query
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total
