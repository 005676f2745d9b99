"""
Booking Flow Hand-off Schemas

Small records passed between the steps of the booking flow (slot selection,
confirmation, payment, result). They are hints for the client, never the
source of truth; the booking is.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, date, time
import uuid
from app.domain.bookings.models import ConsultationType


class SlotSelection(BaseModel):
    doctor_id: uuid.UUID
    schedule_id: uuid.UUID
    booking_date: date
    time_slot: time
    consultation_type: ConsultationType
    duration_minutes: int = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentHandoff(BaseModel):
    booking_id: uuid.UUID
    order_id: str
    snap_token: Optional[str] = None
    snap_redirect_url: Optional[str] = None
    expiry_time: Optional[datetime] = None


class BookingReceipt(BaseModel):
    booking_id: uuid.UUID
    provider_name: str
    booking_date: date
    start_time: time
    end_time: time
    amount: int


FLOW_STEPS = {
    "slot-selection": SlotSelection,
    "payment": PaymentHandoff,
    "receipt": BookingReceipt,
}
