"""
Reservation coordinator: the only write path to the capacity and booking ledgers.

CONCURRENCY STRATEGY: Slot Row Lock inside a Unit of Work
=========================================================

Problem:
  Two customers try to take the last seat of a slot simultaneously.
  Both read remaining_seats=1, both decrement, both get a booking.
  The same customer double-submitting can also slip two bookings past the
  duplicate check if both requests check before either commits.

Solution:
  Every write runs as one unit of work (a fresh session + transaction):

  1. SELECT ... FOR UPDATE on the slot row. All reserve/cancel/status-change
     calls touching that slot queue here; other slots never contend.
     SQLite has no row locks: the unit of work opens with BEGIN IMMEDIATE
     instead and writers queue on the database lock.
  2. With the lock held: duplicate check, ownership check, then
     UPDATE slots SET remaining_seats = remaining_seats - 1
       WHERE id = :slot_id AND remaining_seats > 0
     and INSERT the booking (or the reverse for cancellation).
  3. Commit both writes together. Any exception rolls both back.

  Transient storage conflicts (serialization failures, deadlocks, lock
  timeouts, SQLite "database is locked") discard the attempt and retry the
  whole unit of work with exponential backoff plus jitter. After
  RESERVATION_MAX_ATTEMPTS the caller gets TransientStorageError.

  The CHECK (remaining_seats >= 0) constraint and the partial unique index on
  active (customer_id, slot_id) are the storage-level safety net.
"""

import asyncio
import random
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.booking import Booking, BookingStatus
from app.models.workshop import Workshop
from app.services import booking_ledger, capacity_ledger
from app.db.session import begin_write, get_session_factory
from app.core.config import get_settings
from app.core.exceptions import (
    AlreadyCanceledError,
    BookingNotFoundError,
    BookingServiceError,
    DuplicateBookingError,
    ForbiddenError,
    InvalidTransitionError,
    NotOwnerError,
    SlotFullError,
    SlotMismatchError,
    SlotNotFoundError,
    TransientStorageError,
    WorkshopNotFoundError,
)
from app.core.metrics import record_reservation_outcome, record_transaction_retry, reservation_latency
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_transient_error(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, OperationalError):
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate in TRANSIENT_SQLSTATES


class ReservationCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 5,
        retry_base_delay: float = 0.01,
        retry_max_delay: float = 0.25,
    ):
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    async def reserve(self, customer_id: int, workshop_id: int, slot_id: int) -> Booking:
        """
        Take one seat in `slot_id` for `customer_id` and create a PENDING booking.

        Raises DuplicateBookingError, SlotMismatchError, SlotFullError,
        SlotNotFoundError / WorkshopNotFoundError, or TransientStorageError.
        """

        async def work(db: AsyncSession) -> Booking:
            slot = await capacity_ledger.lock_slot(db, slot_id)
            if slot is None:
                raise SlotNotFoundError()

            if await booking_ledger.find_active(db, customer_id, slot_id) is not None:
                raise DuplicateBookingError()

            if slot.workshop_id != workshop_id:
                raise SlotMismatchError()

            workshop = (
                await db.execute(select(Workshop.id, Workshop.deleted_at).where(Workshop.id == workshop_id))
            ).first()
            if workshop is None or workshop.deleted_at is not None:
                raise WorkshopNotFoundError()

            if not await capacity_ledger.try_decrement(db, slot_id):
                raise SlotFullError()

            try:
                return await booking_ledger.insert(db, customer_id, workshop_id, slot_id)
            except IntegrityError as exc:
                raise DuplicateBookingError() from exc

        async with self._observe("reserve", customer_id=customer_id, slot_id=slot_id):
            booking = await self._run_in_transaction("reserve", work)

        logger.info(
            "reservation_created",
            booking_id=booking.id,
            customer_id=customer_id,
            workshop_id=workshop_id,
            slot_id=slot_id,
        )
        return booking

    async def cancel(self, booking_id: int, caller_id: int, is_operator: bool = False) -> Booking:
        """
        Cancel a booking and give its seat back.

        A customer may only cancel their own booking; operators may cancel any.
        Canceling twice raises AlreadyCanceledError and changes nothing.
        """

        async def work(db: AsyncSession) -> Booking:
            booking = await booking_ledger.get(db, booking_id)
            if booking is None:
                raise BookingNotFoundError()
            if booking.customer_id != caller_id and not is_operator:
                raise NotOwnerError()

            booking = await self._lock_booking(db, booking)
            if booking.status is BookingStatus.CANCELED:
                raise AlreadyCanceledError()

            await self._apply_status(db, booking, BookingStatus.CANCELED)
            return booking

        async with self._observe("cancel", booking_id=booking_id, caller_id=caller_id):
            booking = await self._run_in_transaction("cancel", work)

        logger.info(
            "booking_canceled",
            booking_id=booking.id,
            customer_id=booking.customer_id,
            slot_id=booking.slot_id,
            by_operator=is_operator and booking.customer_id != caller_id,
        )
        return booking

    async def set_status(self, booking_id: int, new_status: BookingStatus, is_operator: bool) -> BookingStatus:
        """
        Operator status change. Returns the status the booking had before.

        CANCELED is terminal: leaving it raises AlreadyCanceledError. Setting the
        current status again is a no-op. CONFIRMED -> PENDING is rejected with
        InvalidTransitionError. Only a transition to CANCELED gives a seat back.
        """
        new_status = BookingStatus(new_status)

        async def work(db: AsyncSession) -> BookingStatus:
            booking = await booking_ledger.get(db, booking_id)
            if booking is None:
                raise BookingNotFoundError()

            booking = await self._lock_booking(db, booking, lock_slot=new_status is BookingStatus.CANCELED)
            current = booking.status
            if current is BookingStatus.CANCELED:
                raise AlreadyCanceledError()
            if current is new_status:
                return current
            if not current.can_transition_to(new_status):
                raise InvalidTransitionError(current, new_status)

            return await self._apply_status(db, booking, new_status)

        async with self._observe("set_status", booking_id=booking_id, new_status=new_status.value):
            if not is_operator:
                raise ForbiddenError()
            previous = await self._run_in_transaction("set_status", work)

        logger.info(
            "booking_status_changed",
            booking_id=booking_id,
            previous_status=previous.value,
            new_status=new_status.value,
        )
        return previous

    async def get_slot_availability(self, slot_id: int) -> int:
        """Lock-free read. May trail a reservation that has not committed yet."""
        async with self._session_factory() as db:
            remaining = await capacity_ledger.get_remaining_seats(db, slot_id)
        if remaining is None:
            raise SlotNotFoundError()
        return remaining

    async def get_booking(self, booking_id: int) -> Booking:
        async with self._session_factory() as db:
            booking = await booking_ledger.get(db, booking_id)
        if booking is None:
            raise BookingNotFoundError()
        return booking

    async def _lock_booking(self, db: AsyncSession, booking: Booking, lock_slot: bool = True) -> Booking:
        # Lock order is always slot, then booking (same as reserve)
        if lock_slot and booking.slot_id is not None:
            await capacity_ledger.lock_slot(db, booking.slot_id)
        return await booking_ledger.get(db, booking.id, for_update=True)

    async def _apply_status(self, db: AsyncSession, booking: Booking, new_status: BookingStatus) -> BookingStatus:
        slot_id = booking.slot_id
        previous = await booking_ledger.set_status(db, booking.id, new_status)
        if new_status is BookingStatus.CANCELED and previous.is_active and slot_id is not None:
            await capacity_ledger.increment(db, slot_id)
        return previous

    async def _run_in_transaction(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """
        Run `work` in a fresh session and transaction, committing on return.

        Any exception raised by `work` rolls the whole transaction back.
        Transient storage conflicts retry the full unit of work.
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        await begin_write(db)
                        return await work(db)
            except DBAPIError as exc:
                if not is_transient_error(exc):
                    raise
                record_transaction_retry(operation)
                if attempt == self._max_attempts:
                    logger.error(
                        "transaction_retries_exhausted",
                        operation=operation,
                        attempts=attempt,
                        error=str(exc.orig),
                    )
                    raise TransientStorageError() from exc

                delay = self._backoff_delay(attempt)
                logger.info(
                    "transaction_retry",
                    operation=operation,
                    attempt=attempt,
                    delay_ms=round(delay * 1000, 2),
                    reason=type(exc.orig).__name__,
                )
                await asyncio.sleep(delay)

        raise TransientStorageError()

    def _backoff_delay(self, attempt: int) -> float:
        delay = min(self._retry_base_delay * (2 ** (attempt - 1)), self._retry_max_delay)
        return delay + random.uniform(0, self._retry_base_delay)

    @asynccontextmanager
    async def _observe(self, operation: str, **context):
        start = time.perf_counter()
        try:
            yield
        except BookingServiceError as exc:
            record_reservation_outcome(operation, exc.code)
            logger.info(f"{operation}_rejected", reason=exc.code, **context)
            raise
        else:
            record_reservation_outcome(operation, "success")
        finally:
            reservation_latency.labels(operation=operation).observe(time.perf_counter() - start)


_coordinator: Optional[ReservationCoordinator] = None


def get_coordinator() -> ReservationCoordinator:
    """Coordinator singleton bound to the configured database (FastAPI dependency)."""
    global _coordinator
    if _coordinator is None:
        settings = get_settings()
        _coordinator = ReservationCoordinator(
            get_session_factory(),
            max_attempts=settings.RESERVATION_MAX_ATTEMPTS,
            retry_base_delay=settings.RESERVATION_RETRY_BASE_DELAY,
            retry_max_delay=settings.RESERVATION_RETRY_MAX_DELAY,
        )
    return _coordinator
