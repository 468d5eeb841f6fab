"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from app.models.booking import BookingStatus


class BookingCreate(BaseModel):
    workshop_id: int
    slot_id: int


class BookingResponse(BaseModel):
    id: int
    customer_id: int
    workshop_id: int
    slot_id: Optional[int]
    status: BookingStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: BookingStatus


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingStatusResponse(BaseModel):
    message: str
    booking_id: int
    previous_status: BookingStatus
    status: BookingStatus
