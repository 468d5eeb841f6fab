"""
Pydantic schemas for workshop and slot request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from app.schemas.booking import BookingResponse


class SlotCreate(BaseModel):
    start_time: str = Field(..., min_length=1, max_length=50)
    end_time: str = Field(..., min_length=1, max_length=50)


class SlotUpdate(BaseModel):
    """Label change only. Seat counts are owned by the reservation engine."""

    start_time: Optional[str] = Field(None, min_length=1, max_length=50)
    end_time: Optional[str] = Field(None, min_length=1, max_length=50)

    model_config = {"extra": "forbid"}


class SlotResponse(BaseModel):
    id: int
    workshop_id: int
    start_time: str
    end_time: str
    remaining_seats: int

    model_config = {"from_attributes": True}


class SlotAvailabilityResponse(BaseModel):
    slot_id: int
    remaining_seats: int


class WorkshopCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    date: datetime
    capacity: int = Field(..., gt=0, le=10000)
    slots: list[SlotCreate] = Field(..., min_length=1)


class WorkshopResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    date: datetime
    capacity: int
    deleted_at: Optional[datetime] = None
    created_at: datetime
    slots: list[SlotResponse]

    model_config = {"from_attributes": True}


class WorkshopListResponse(BaseModel):
    workshops: list[WorkshopResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class AdminWorkshopResponse(WorkshopResponse):
    booking_count: int = 0
    active_booking_count: int = 0


class AdminWorkshopListResponse(BaseModel):
    workshops: list[AdminWorkshopResponse]
    total: int
    page: int
    page_size: int


class WorkshopDetailResponse(WorkshopResponse):
    """Operator view of one workshop, deleted or not, with its active bookings."""

    bookings: list[BookingResponse]
