# Bookings domain module
from app.domain.bookings.models import (
    Booking,
    BookingSlotHold,
    BookingStatus,
    ConsultationType,
    PaymentStatus,
    TERMINAL_STATUSES,
)
from app.domain.bookings.lifecycle import BookingEvent, BookingLifecycle

__all__ = [
    "Booking",
    "BookingSlotHold",
    "BookingStatus",
    "ConsultationType",
    "PaymentStatus",
    "TERMINAL_STATUSES",
    "BookingEvent",
    "BookingLifecycle",
]
