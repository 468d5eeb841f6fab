"""
Booking model representing a customer's seat in a workshop slot.

Key design decisions:
- Bookings are never deleted; cancellation is a status transition
- At most one active (non-CANCELED) booking per (customer, slot), enforced by
  the coordinator and backed by a partial unique index
- `customer_id` is an identity asserted by the gateway, not a local foreign key
- `slot_id` is nulled if an operator deletes a slot whose bookings are all canceled
"""

import enum

from sqlalchemy import Column, Integer, DateTime, Enum, ForeignKey, Index, text

from app.db.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"

    @property
    def is_active(self) -> bool:
        return self is not BookingStatus.CANCELED

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return target in _TRANSITIONS[self]


# CANCELED is terminal
_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELED}),
    BookingStatus.CANCELED: frozenset(),
}

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    workshop_id = Column(Integer, ForeignKey("workshops.id"), nullable=False, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id", ondelete="SET NULL"), nullable=True)
    status = Column(
        Enum(BookingStatus, name="booking_status", native_enum=False, length=20, create_constraint=True),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Duplicate-booking check
        Index("ix_bookings_customer_slot_status", "customer_id", "slot_id", "status"),
        # Availability and slot-deletion reads
        Index("ix_bookings_slot_id", "slot_id"),
        Index(
            "uq_bookings_active_customer_slot",
            "customer_id",
            "slot_id",
            unique=True,
            postgresql_where=text("status <> 'CANCELED'"),
            sqlite_where=text("status <> 'CANCELED'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, customer={self.customer_id}, slot={self.slot_id}, status={self.status})>"
