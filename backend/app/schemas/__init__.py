from app.schemas.workshop import (
    SlotCreate, SlotUpdate, SlotResponse, SlotAvailabilityResponse,
    WorkshopCreate, WorkshopResponse, WorkshopListResponse,
    AdminWorkshopResponse, AdminWorkshopListResponse, WorkshopDetailResponse,
)
from app.schemas.booking import (
    BookingCreate, BookingResponse, BookingListResponse,
    BookingCancelResponse, BookingStatusUpdate, BookingStatusResponse,
)

__all__ = [
    "SlotCreate", "SlotUpdate", "SlotResponse", "SlotAvailabilityResponse",
    "WorkshopCreate", "WorkshopResponse", "WorkshopListResponse",
    "AdminWorkshopResponse", "AdminWorkshopListResponse", "WorkshopDetailResponse",
    "BookingCreate", "BookingResponse", "BookingListResponse",
    "BookingCancelResponse", "BookingStatusUpdate", "BookingStatusResponse",
]
