"""
Workshop and Slot models.

Key design decisions:
- `capacity` lives on the workshop; every slot starts with
  `remaining_seats = capacity`
- `remaining_seats` is denormalized so availability is a single-row read.
  It is only ever changed by the reservation coordinator, one seat at a time
- `deleted_at` is a soft-delete marker; a deleted workshop keeps its rows
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class Workshop(Base, TimestampMixin):
    __tablename__ = "workshops"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    slots = relationship(
        "Slot",
        back_populates="workshop",
        lazy="selectin",
        order_by="Slot.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_workshop_capacity_positive"),
        Index("ix_workshops_date", "date"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Workshop(id={self.id}, title={self.title}, capacity={self.capacity})>"


class Slot(Base):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    workshop_id = Column(Integer, ForeignKey("workshops.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(String(50), nullable=False)
    end_time = Column(String(50), nullable=False)
    remaining_seats = Column(Integer, nullable=False)

    workshop = relationship("Workshop", back_populates="slots", lazy="raise")

    __table_args__ = (
        # Last line of defence against overbooking
        CheckConstraint("remaining_seats >= 0", name="check_remaining_seats_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Slot(id={self.id}, workshop={self.workshop_id}, remaining={self.remaining_seats})>"
