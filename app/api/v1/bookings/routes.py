"""
Bookings API Routes

API endpoints for slot availability, reservation, cancellation and outcome.
"""

from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from datetime import date
import uuid

from app.api.deps import (
    CurrentUser, get_clock, get_current_user, get_payment_gateway, get_supervisor
)
from app.infrastructure.database import get_db
from app.domain.bookings.availability import AvailabilityResolver
from app.domain.bookings.models import BookingStatus
from app.domain.bookings.service import BookingService
from app.domain.providers.models import DayOfWeek
from app.api.v1.bookings.schemas import (
    AvailableSlot, AvailableSlotsResponse,
    BookingCreate, BookingCancel, BookingResponse, CreateBookingResponse,
    BookingOutcomeResponse
)
from app.api.v1.payments.schemas import payment_info

router = APIRouter()


def get_booking_service(
    db=Depends(get_db),
    gateway=Depends(get_payment_gateway),
    supervisor=Depends(get_supervisor),
    clock=Depends(get_clock)
) -> BookingService:
    return BookingService(db, gateway, supervisor, clock)


@router.get("/available-slots/{provider_id}", response_model=AvailableSlotsResponse)
async def get_available_slots(
    provider_id: uuid.UUID,
    date: date = Query(..., description="Calendar date to resolve"),
    db=Depends(get_db),
    clock=Depends(get_clock)
):
    """Slots of a doctor on a date; booked ones are kept with is_available=false"""
    resolver = AvailabilityResolver(db, clock)
    slots = await resolver.resolve(provider_id, date)
    return AvailableSlotsResponse(
        provider_id=provider_id,
        date=date,
        day_of_week=DayOfWeek.from_date(date),
        slots=[AvailableSlot.model_validate(slot) for slot in slots],
    )


@router.post("", response_model=CreateBookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
):
    """Reserve a slot and open its payment"""
    creation = await service.create_booking(
        user_id=current_user.id,
        provider_id=booking_data.doctor_id,
        schedule_id=booking_data.schedule_id,
        booking_date=booking_data.booking_date,
        consultation_type=booking_data.consultation_type,
        duration_minutes=booking_data.duration_minutes,
        notes=booking_data.notes,
    )
    payment_error = None
    if creation.payment_error is not None:
        payment_error = {
            "error_code": creation.payment_error.error_code,
            "message": creation.payment_error.message,
        }
    return CreateBookingResponse(
        message="Booking created" if creation.payment else "Booking created, payment service unavailable",
        booking=BookingResponse.from_booking(creation.booking),
        payment=payment_info(creation.payment) if creation.payment else None,
        payment_error=payment_error,
    )


@router.get("/my-bookings", response_model=List[BookingResponse])
async def get_my_bookings(
    status: Optional[BookingStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
):
    """Bookings of the caller, newest first"""
    bookings = await service.get_my_bookings(current_user.id, status, skip, limit)
    return [BookingResponse.from_booking(booking) for booking in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
):
    booking = await service.get_booking(booking_id, current_user.id)
    return BookingResponse.from_booking(booking)


@router.patch("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: uuid.UUID,
    cancel_data: Optional[BookingCancel] = None,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
):
    """Cancel a booking that is still awaiting payment"""
    booking = await service.cancel_booking(
        booking_id, current_user.id, cancel_data.reason if cancel_data else None
    )
    return BookingResponse.from_booking(booking)


@router.get("/{booking_id}/outcome", response_model=BookingOutcomeResponse)
async def get_booking_outcome(
    booking_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
):
    """Receipt for a confirmed booking, otherwise a reason code"""
    outcome = await service.get_outcome(booking_id, current_user.id)
    return BookingOutcomeResponse.model_validate(outcome)
