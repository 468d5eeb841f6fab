"""
Domain errors raised by the reservation engine and the workshop catalogue.

Each error carries the HTTP status and a stable machine-readable code; the API
layer renders them with a single exception handler. None of them is retried.
"""

from typing import Optional

from fastapi import status


class BookingServiceError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"
    default_message: str = "Booking request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(BookingServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Resource not found"


class WorkshopNotFoundError(NotFoundError):
    code = "workshop_not_found"
    default_message = "Workshop not found"


class SlotNotFoundError(NotFoundError):
    code = "slot_not_found"
    default_message = "Time slot not found"


class BookingNotFoundError(NotFoundError):
    code = "booking_not_found"
    default_message = "Booking not found"


class NotOwnerError(BookingNotFoundError):
    """Caller does not own the booking. Rendered as 404 so ids don't leak."""

    code = "not_owner"
    default_message = "Booking not found or you are not authorized to cancel it"


class ForbiddenError(BookingServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Operator privileges required"


class DuplicateBookingError(BookingServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_booking"
    default_message = "You have already booked this time slot"


class SlotFullError(BookingServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_full"
    default_message = "No available spots for this time slot"


class SlotMismatchError(BookingServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "slot_mismatch"
    default_message = "Time slot does not belong to the specified workshop"


class AlreadyCanceledError(BookingServiceError):
    """Idempotent outcome: the booking was canceled before, nothing changed."""

    status_code = status.HTTP_200_OK
    code = "already_canceled"
    default_message = "This booking has already been canceled"


class InvalidTransitionError(BookingServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Illegal booking status transition: {from_status.value} -> {to_status.value}")


class SlotInUseError(BookingServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_in_use"
    default_message = "Cannot delete time slot with active bookings. Please cancel bookings first."


class TransientStorageError(BookingServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transient_failure"
    default_message = "Booking failed due to high demand. Please try again."
