"""
Pytest fixtures for the test database, reservation coordinator and HTTP client.

Each test gets its own SQLite file (via aiosqlite), so the suite runs without
PostgreSQL or Redis and tests never share state.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.main import app
from app.db.base import Base
from app.db.session import create_engine, create_session_factory, get_db
from app.models.workshop import Workshop, Slot
from app.models.booking import Booking, ACTIVE_STATUSES
from app.services.reservation_service import ReservationCoordinator, get_coordinator

OPERATOR_ID = 9000


@pytest.fixture
def customer_headers():
    """Gateway identity headers for a customer."""
    return lambda customer_id: {"X-User-ID": str(customer_id)}


@pytest.fixture
def operator_headers() -> dict:
    return {"X-User-ID": str(OPERATOR_ID), "X-User-Role": "ADMIN"}


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file with all tables created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'workshop_booking_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def coordinator(session_factory) -> ReservationCoordinator:
    return ReservationCoordinator(session_factory, max_attempts=5, retry_base_delay=0.001)


@pytest_asyncio.fixture
async def make_workshop(session_factory):
    """
    Factory: create a workshop with `slots` slots of `capacity` seats each.
    Returns (workshop_id, [slot_id, ...]).
    """

    async def _make(
        capacity: int = 2,
        slots: int = 1,
        deleted: bool = False,
        title: str = "Pottery Basics",
        days_ahead: int = 30,
    ):
        async with session_factory() as session:
            async with session.begin():
                workshop = Workshop(
                    title=title,
                    description="Hands-on introduction",
                    date=datetime.now(timezone.utc) + timedelta(days=days_ahead),
                    capacity=capacity,
                    deleted_at=datetime.now(timezone.utc) if deleted else None,
                    slots=[
                        Slot(start_time=f"{9 + i:02d}:00", end_time=f"{10 + i:02d}:00", remaining_seats=capacity)
                        for i in range(slots)
                    ],
                )
                session.add(workshop)
                await session.flush()
                return workshop.id, [slot.id for slot in workshop.slots]

    return _make


@pytest_asyncio.fixture
async def slot_state(session_factory):
    """
    Snapshot of a slot: (remaining_seats, capacity, active_bookings, all_bookings).
    """

    async def _state(slot_id: int):
        async with session_factory() as session:
            slot = await session.get(Slot, slot_id)
            capacity = (
                await session.execute(select(Workshop.capacity).where(Workshop.id == slot.workshop_id))
            ).scalar_one()
            active = (
                await session.execute(
                    select(func.count())
                    .select_from(Booking)
                    .where(Booking.slot_id == slot_id, Booking.status.in_(ACTIVE_STATUSES))
                )
            ).scalar_one()
            total = (
                await session.execute(select(func.count()).select_from(Booking).where(Booking.slot_id == slot_id))
            ).scalar_one()
            return slot.remaining_seats, capacity, active, total

    return _state


@pytest_asyncio.fixture
async def assert_seats_consistent(slot_state):
    """remaining_seats must equal capacity minus active bookings on the slot."""

    async def _check(slot_id: int):
        remaining, capacity, active, _ = await slot_state(slot_id)
        assert remaining == capacity - active
        assert 0 <= remaining <= capacity
        return remaining

    return _check


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, coordinator) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and coordinator."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
