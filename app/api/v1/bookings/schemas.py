"""
Bookings API Schemas

Pydantic models for booking-related API requests and responses.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date, time
import uuid
from app.domain.bookings.models import Booking, BookingStatus, ConsultationType, PaymentStatus
from app.domain.providers.models import DayOfWeek


# ==================== Availability Schemas ====================

class AvailableSlot(BaseModel):
    """Schema for one slot on a calendar date"""
    schedule_id: uuid.UUID
    time_slot: time
    duration_minutes: int
    is_available: bool
    unavailable_reason: Optional[str] = None

    class Config:
        from_attributes = True


class AvailableSlotsResponse(BaseModel):
    """Schema for available slots response"""
    provider_id: uuid.UUID
    date: date
    day_of_week: DayOfWeek
    slots: List[AvailableSlot]


# ==================== Booking Schemas ====================

class BookingCreate(BaseModel):
    """Schema for reserving a slot.

    The fee is computed server side from the doctor's rate; end time follows
    from the slot and the duration.
    """
    doctor_id: uuid.UUID
    schedule_id: uuid.UUID
    booking_date: date
    consultation_type: ConsultationType
    duration_minutes: int = Field(..., gt=0, le=24 * 60)
    notes: Optional[str] = Field(None, max_length=1000)


class BookingCancel(BaseModel):
    """Schema for cancelling a booking"""
    reason: Optional[str] = Field(None, max_length=500)


class BookingDoctor(BaseModel):
    id: uuid.UUID
    name: str
    specialization: str
    practice_address: Optional[str] = None

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    """Schema for booking response"""
    id: uuid.UUID
    user_id: uuid.UUID
    provider_id: uuid.UUID
    schedule_slot_id: Optional[uuid.UUID] = None
    booking_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    consultation_type: ConsultationType
    consultation_type_label: str
    consultation_fee: int
    status: BookingStatus
    status_label: str
    payment_status: PaymentStatus
    payment_status_label: str
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    doctor: Optional[BookingDoctor] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            user_id=booking.user_id,
            provider_id=booking.provider_id,
            schedule_slot_id=booking.schedule_slot_id,
            booking_date=booking.booking_date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            duration_minutes=booking.duration_minutes,
            consultation_type=booking.consultation_type,
            consultation_type_label=booking.consultation_type.label,
            consultation_fee=booking.consultation_fee,
            status=booking.status,
            status_label=booking.status.label,
            payment_status=booking.payment_status,
            payment_status_label=booking.payment_status.label,
            notes=booking.notes,
            cancellation_reason=booking.cancellation_reason,
            version=booking.version,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            doctor=BookingDoctor.model_validate(booking.provider) if booking.provider else None,
        )


class PaymentInfo(BaseModel):
    """Gateway handle the client needs to open the payment window"""
    order_id: str
    amount: int
    expiry_time: Optional[datetime] = None
    snap_token: Optional[str] = None
    snap_redirect_url: Optional[str] = None


class CreateBookingResponse(BaseModel):
    """Schema for reserve-and-pay response"""
    message: str
    booking: BookingResponse
    payment: Optional[PaymentInfo] = None
    payment_error: Optional[Dict[str, Any]] = None


# ==================== Outcome Schemas ====================

class BookingReceiptResponse(BaseModel):
    booking_id: uuid.UUID
    provider_name: str
    booking_date: date
    start_time: time
    end_time: time
    amount: int

    class Config:
        from_attributes = True


class BookingOutcomeResponse(BaseModel):
    """Where a booking ended up and what the caller can do next"""
    booking_id: uuid.UUID
    status: BookingStatus
    payment_status: PaymentStatus
    reason: Optional[str] = None
    next_action: str
    receipt: Optional[BookingReceiptResponse] = None

    class Config:
        from_attributes = True
