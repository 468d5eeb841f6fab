"""
Tests for the reservation coordinator: protocol, state machine, idempotence
and behaviour under concurrent load.
"""

import asyncio

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError, IntegrityError

from app.core.exceptions import (
    AlreadyCanceledError,
    BookingNotFoundError,
    DuplicateBookingError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    NotOwnerError,
    SlotFullError,
    SlotMismatchError,
    SlotNotFoundError,
    TransientStorageError,
    WorkshopNotFoundError,
)
from app.db.session import begin_write
from app.models.booking import BookingStatus
from app.services import capacity_ledger
from app.services.reservation_service import ReservationCoordinator, is_transient_error


@pytest.mark.asyncio
async def test_reserve_creates_pending_booking(coordinator, make_workshop, assert_seats_consistent):
    workshop_id, (slot_id,) = await make_workshop(capacity=3)

    booking = await coordinator.reserve(1, workshop_id, slot_id)

    assert booking.status is BookingStatus.PENDING
    assert booking.customer_id == 1
    assert booking.workshop_id == workshop_id
    assert booking.slot_id == slot_id
    assert await coordinator.get_slot_availability(slot_id) == 2
    await assert_seats_consistent(slot_id)


@pytest.mark.asyncio
async def test_reserve_twice_is_duplicate(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=3)
    await coordinator.reserve(1, workshop_id, slot_id)

    with pytest.raises(DuplicateBookingError):
        await coordinator.reserve(1, workshop_id, slot_id)

    remaining, _, active, total = await slot_state(slot_id)
    assert (remaining, active, total) == (2, 1, 1)


@pytest.mark.asyncio
async def test_reserve_slot_of_other_workshop_is_mismatch(coordinator, make_workshop, slot_state):
    w1, (slot_id,) = await make_workshop(capacity=2, title="W1")
    w2, _ = await make_workshop(capacity=2, title="W2")

    with pytest.raises(SlotMismatchError):
        await coordinator.reserve(1, w2, slot_id)

    remaining, _, _, total = await slot_state(slot_id)
    assert remaining == 2
    assert total == 0


@pytest.mark.asyncio
async def test_reserve_unknown_slot(coordinator, make_workshop):
    workshop_id, _ = await make_workshop()

    with pytest.raises(SlotNotFoundError):
        await coordinator.reserve(1, workshop_id, 424242)


@pytest.mark.asyncio
async def test_reserve_soft_deleted_workshop(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=2, deleted=True)

    with pytest.raises(WorkshopNotFoundError):
        await coordinator.reserve(1, workshop_id, slot_id)

    remaining, _, _, total = await slot_state(slot_id)
    assert (remaining, total) == (2, 0)


@pytest.mark.asyncio
async def test_capacity_two_scenario(coordinator, make_workshop, assert_seats_consistent):
    workshop_id, (slot_id,) = await make_workshop(capacity=2)

    booking_a = await coordinator.reserve(1, workshop_id, slot_id)
    await coordinator.reserve(2, workshop_id, slot_id)
    with pytest.raises(SlotFullError):
        await coordinator.reserve(3, workshop_id, slot_id)
    assert await assert_seats_consistent(slot_id) == 0

    await coordinator.cancel(booking_a.id, caller_id=1)
    booking_c = await coordinator.reserve(3, workshop_id, slot_id)

    assert booking_c.status is BookingStatus.PENDING
    assert await assert_seats_consistent(slot_id) == 0


@pytest.mark.asyncio
async def test_reserve_again_after_cancel(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=2)
    first = await coordinator.reserve(1, workshop_id, slot_id)
    await coordinator.cancel(first.id, caller_id=1)

    second = await coordinator.reserve(1, workshop_id, slot_id)

    assert second.id != first.id
    remaining, _, active, total = await slot_state(slot_id)
    assert (remaining, active, total) == (1, 1, 2)


@pytest.mark.asyncio
async def test_reserve_then_cancel_restores_seat(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=4)
    before = await coordinator.get_slot_availability(slot_id)

    booking = await coordinator.reserve(1, workshop_id, slot_id)
    canceled = await coordinator.cancel(booking.id, caller_id=1)

    assert canceled.status is BookingStatus.CANCELED
    remaining, _, active, total = await slot_state(slot_id)
    assert remaining == before
    assert active == 0
    # The booking row is kept, not deleted
    assert total == 1
    assert (await coordinator.get_booking(booking.id)).status is BookingStatus.CANCELED


@pytest.mark.asyncio
async def test_cancel_twice_is_idempotent(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=2)
    booking = await coordinator.reserve(1, workshop_id, slot_id)
    await coordinator.reserve(2, workshop_id, slot_id)
    await coordinator.cancel(booking.id, caller_id=1)
    after_first = await slot_state(slot_id)

    with pytest.raises(AlreadyCanceledError):
        await coordinator.cancel(booking.id, caller_id=1)

    assert await slot_state(slot_id) == after_first
    assert after_first[0] == 1


@pytest.mark.asyncio
async def test_cancel_unknown_booking(coordinator):
    with pytest.raises(BookingNotFoundError):
        await coordinator.cancel(424242, caller_id=1)


@pytest.mark.asyncio
async def test_cancel_someone_elses_booking(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=2)
    booking = await coordinator.reserve(1, workshop_id, slot_id)

    with pytest.raises(NotOwnerError) as exc_info:
        await coordinator.cancel(booking.id, caller_id=2)

    assert isinstance(exc_info.value, NotFoundError)
    assert (await coordinator.get_booking(booking.id)).status is BookingStatus.PENDING
    assert (await slot_state(slot_id))[0] == 1


@pytest.mark.asyncio
async def test_operator_can_cancel_any_booking(coordinator, make_workshop, assert_seats_consistent):
    workshop_id, (slot_id,) = await make_workshop(capacity=2)
    booking = await coordinator.reserve(1, workshop_id, slot_id)

    canceled = await coordinator.cancel(booking.id, caller_id=99, is_operator=True)

    assert canceled.status is BookingStatus.CANCELED
    assert await assert_seats_consistent(slot_id) == 2


@pytest.mark.asyncio
async def test_set_status_requires_operator(coordinator, make_workshop):
    workshop_id, (slot_id,) = await make_workshop()
    booking = await coordinator.reserve(1, workshop_id, slot_id)

    with pytest.raises(ForbiddenError):
        await coordinator.set_status(booking.id, BookingStatus.CONFIRMED, is_operator=False)

    assert (await coordinator.get_booking(booking.id)).status is BookingStatus.PENDING


@pytest.mark.asyncio
async def test_set_status_unknown_booking(coordinator):
    with pytest.raises(BookingNotFoundError):
        await coordinator.set_status(424242, BookingStatus.CONFIRMED, is_operator=True)


@pytest.mark.asyncio
async def test_confirm_does_not_touch_capacity(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=3)
    booking = await coordinator.reserve(1, workshop_id, slot_id)

    previous = await coordinator.set_status(booking.id, BookingStatus.CONFIRMED, is_operator=True)

    assert previous is BookingStatus.PENDING
    assert (await coordinator.get_booking(booking.id)).status is BookingStatus.CONFIRMED
    assert (await slot_state(slot_id))[0] == 2


@pytest.mark.asyncio
async def test_same_status_is_noop(coordinator, make_workshop):
    workshop_id, (slot_id,) = await make_workshop()
    booking = await coordinator.reserve(1, workshop_id, slot_id)
    await coordinator.set_status(booking.id, BookingStatus.CONFIRMED, is_operator=True)

    previous = await coordinator.set_status(booking.id, BookingStatus.CONFIRMED, is_operator=True)

    assert previous is BookingStatus.CONFIRMED
    assert (await coordinator.get_booking(booking.id)).status is BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_confirmed_cannot_go_back_to_pending(coordinator, make_workshop):
    workshop_id, (slot_id,) = await make_workshop()
    booking = await coordinator.reserve(1, workshop_id, slot_id)
    await coordinator.set_status(booking.id, BookingStatus.CONFIRMED, is_operator=True)

    with pytest.raises(InvalidTransitionError):
        await coordinator.set_status(booking.id, BookingStatus.PENDING, is_operator=True)

    assert (await coordinator.get_booking(booking.id)).status is BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_admin_cancel_restores_seat_once(coordinator, make_workshop, assert_seats_consistent):
    workshop_id, (slot_id,) = await make_workshop(capacity=2)
    booking = await coordinator.reserve(1, workshop_id, slot_id)
    await coordinator.set_status(booking.id, BookingStatus.CONFIRMED, is_operator=True)

    previous = await coordinator.set_status(booking.id, BookingStatus.CANCELED, is_operator=True)
    assert previous is BookingStatus.CONFIRMED
    assert await assert_seats_consistent(slot_id) == 2

    with pytest.raises(AlreadyCanceledError):
        await coordinator.set_status(booking.id, BookingStatus.CANCELED, is_operator=True)
    with pytest.raises(AlreadyCanceledError):
        await coordinator.cancel(booking.id, caller_id=1)
    assert await assert_seats_consistent(slot_id) == 2


@pytest.mark.asyncio
async def test_canceled_is_terminal(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=2)
    booking = await coordinator.reserve(1, workshop_id, slot_id)
    await coordinator.cancel(booking.id, caller_id=1)

    for target in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
        with pytest.raises(AlreadyCanceledError):
            await coordinator.set_status(booking.id, target, is_operator=True)

    assert (await coordinator.get_booking(booking.id)).status is BookingStatus.CANCELED
    remaining, _, active, _ = await slot_state(slot_id)
    assert (remaining, active) == (2, 0)


@pytest.mark.asyncio
async def test_set_status_accepts_wire_value(coordinator, make_workshop):
    workshop_id, (slot_id,) = await make_workshop()
    booking = await coordinator.reserve(1, workshop_id, slot_id)

    previous = await coordinator.set_status(booking.id, "CONFIRMED", is_operator=True)

    assert previous is BookingStatus.PENDING


@pytest.mark.asyncio
async def test_reads_of_unknown_ids(coordinator):
    with pytest.raises(SlotNotFoundError):
        await coordinator.get_slot_availability(424242)
    with pytest.raises(BookingNotFoundError):
        await coordinator.get_booking(424242)


@pytest.mark.asyncio
async def test_last_seat_under_contention(coordinator, make_workshop, slot_state):
    """50 customers race for one seat: exactly one wins, nobody sees a storage error."""
    workshop_id, (slot_id,) = await make_workshop(capacity=1)

    results = await asyncio.gather(
        *(coordinator.reserve(customer_id, workshop_id, slot_id) for customer_id in range(1, 51)),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 49
    assert all(isinstance(f, SlotFullError) for f in failures)

    remaining, _, active, total = await slot_state(slot_id)
    assert (remaining, active, total) == (0, 1, 1)


@pytest.mark.asyncio
async def test_same_customer_double_submit(coordinator, make_workshop, slot_state):
    workshop_id, (slot_id,) = await make_workshop(capacity=10)

    results = await asyncio.gather(
        *(coordinator.reserve(1, workshop_id, slot_id) for _ in range(10)),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == 1
    assert all(isinstance(r, DuplicateBookingError) for r in results if isinstance(r, Exception))

    remaining, _, active, _ = await slot_state(slot_id)
    assert (remaining, active) == (9, 1)


@pytest.mark.asyncio
async def test_mixed_reserve_and_cancel_keeps_invariant(coordinator, make_workshop, assert_seats_consistent):
    workshop_id, (slot_id,) = await make_workshop(capacity=5)
    held = [await coordinator.reserve(c, workshop_id, slot_id) for c in range(1, 6)]

    cancels = [coordinator.cancel(b.id, caller_id=b.customer_id) for b in held[:3]]
    reserves = [coordinator.reserve(c, workshop_id, slot_id) for c in range(100, 110)]
    results = await asyncio.gather(*cancels, *reserves, return_exceptions=True)

    unexpected = [
        r for r in results
        if isinstance(r, Exception) and not isinstance(r, SlotFullError)
    ]
    assert unexpected == []
    assert await assert_seats_consistent(slot_id) >= 0


@pytest.mark.asyncio
async def test_different_slots_do_not_interfere(coordinator, make_workshop, assert_seats_consistent):
    workshop_id, slot_ids = await make_workshop(capacity=3, slots=4)

    await asyncio.gather(
        *(coordinator.reserve(c, workshop_id, slot_id) for slot_id in slot_ids for c in (1, 2, 3))
    )

    for slot_id in slot_ids:
        assert await assert_seats_consistent(slot_id) == 0


@pytest.mark.asyncio
async def test_reads_do_not_wait_for_an_open_writer(session_factory, coordinator, make_workshop):
    """Availability and booking reads answer while another unit of work holds the write lock."""
    workshop_id, (slot_id,) = await make_workshop(capacity=3)
    booking = await coordinator.reserve(1, workshop_id, slot_id)

    async with session_factory() as writer:
        await begin_write(writer)
        assert await capacity_ledger.try_decrement(writer, slot_id)

        # The uncommitted decrement is not visible
        remaining = await asyncio.wait_for(coordinator.get_slot_availability(slot_id), timeout=5)
        read_back = await asyncio.wait_for(coordinator.get_booking(booking.id), timeout=5)

        assert remaining == 2
        assert read_back.status is BookingStatus.PENDING
        await writer.rollback()


class _SqlStateError(Exception):
    def __init__(self, sqlstate):
        super().__init__(sqlstate)
        self.sqlstate = sqlstate


def test_transient_error_classification():
    assert is_transient_error(OperationalError("UPDATE slots", {}, Exception("database is locked")))
    assert is_transient_error(DBAPIError("UPDATE slots", {}, _SqlStateError("40001")))
    assert is_transient_error(DBAPIError("UPDATE slots", {}, _SqlStateError("40P01")))
    assert not is_transient_error(DBAPIError("UPDATE slots", {}, _SqlStateError("42P01")))
    assert not is_transient_error(IntegrityError("INSERT bookings", {}, _SqlStateError("23505")))


@pytest.mark.asyncio
async def test_transient_conflicts_are_retried(session_factory):
    coordinator = ReservationCoordinator(session_factory, max_attempts=3, retry_base_delay=0.001)
    calls = []

    async def flaky(db):
        calls.append(1)
        if len(calls) < 3:
            raise OperationalError("UPDATE slots", {}, Exception("database is locked"))
        return "committed"

    assert await coordinator._run_in_transaction("reserve", flaky) == "committed"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retries_are_bounded(session_factory):
    coordinator = ReservationCoordinator(session_factory, max_attempts=2, retry_base_delay=0.001)
    calls = []

    async def always_conflicts(db):
        calls.append(1)
        raise DBAPIError("UPDATE slots", {}, _SqlStateError("40001"))

    with pytest.raises(TransientStorageError):
        await coordinator._run_in_transaction("reserve", always_conflicts)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_domain_errors_are_not_retried(session_factory):
    coordinator = ReservationCoordinator(session_factory, max_attempts=5, retry_base_delay=0.001)
    calls = []

    async def full(db):
        calls.append(1)
        raise SlotFullError()

    with pytest.raises(SlotFullError):
        await coordinator._run_in_transaction("reserve", full)
    assert len(calls) == 1
