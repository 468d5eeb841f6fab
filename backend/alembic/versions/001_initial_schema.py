"""Initial schema: workshops, slots, bookings with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_BOOKING = sa.text("status <> 'CANCELED'")


def upgrade() -> None:
    op.create_table(
        "workshops",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("capacity > 0", name="check_workshop_capacity_positive"),
    )
    op.create_index("ix_workshops_id", "workshops", ["id"])
    op.create_index("ix_workshops_date", "workshops", ["date"])

    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workshop_id",
            sa.Integer(),
            sa.ForeignKey("workshops.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("start_time", sa.String(50), nullable=False),
        sa.Column("end_time", sa.String(50), nullable=False),
        sa.Column("remaining_seats", sa.Integer(), nullable=False),
        # Overbooking is impossible even if application logic is bypassed
        sa.CheckConstraint("remaining_seats >= 0", name="check_remaining_seats_non_negative"),
    )
    op.create_index("ix_slots_id", "slots", ["id"])
    op.create_index("ix_slots_workshop_id", "slots", ["workshop_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("workshop_id", sa.Integer(), sa.ForeignKey("workshops.id"), nullable=False),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slots.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('PENDING', 'CONFIRMED', 'CANCELED')", name="booking_status"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_workshop_id", "bookings", ["workshop_id"])
    # Duplicate-booking check: WHERE customer_id = ? AND slot_id = ? AND status <> 'CANCELED'
    op.create_index("ix_bookings_customer_slot_status", "bookings", ["customer_id", "slot_id", "status"])
    # Availability and slot-deletion reads
    op.create_index("ix_bookings_slot_id", "bookings", ["slot_id"])
    # One active booking per customer per slot; canceled rows are exempt
    op.create_index(
        "uq_bookings_active_customer_slot",
        "bookings",
        ["customer_id", "slot_id"],
        unique=True,
        postgresql_where=ACTIVE_BOOKING,
        sqlite_where=ACTIVE_BOOKING,
    )


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("slots")
    op.drop_table("workshops")
