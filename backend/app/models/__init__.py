from app.models.workshop import Workshop, Slot
from app.models.booking import Booking, BookingStatus

__all__ = ["Workshop", "Slot", "Booking", "BookingStatus"]
