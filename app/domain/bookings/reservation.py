"""
Booking reservation.

Turns a selected schedule slot into a PENDING_PAYMENT booking. Fee is fixed
here and never recomputed.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence
import uuid

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import InvalidDateError, SlotOverflowError, ValidationError
from app.domain.bookings.models import Booking, BookingStatus, ConsultationType, PaymentStatus
from app.domain.bookings.repository import BookingRepository
from app.domain.providers.models import DayOfWeek, Provider, ScheduleSlot


def modality_multiplier(consultation_type: ConsultationType, remote_multiplier: Optional[float] = None) -> Decimal:
    if ConsultationType(consultation_type) == ConsultationType.ONLINE:
        value = settings.REMOTE_FEE_MULTIPLIER if remote_multiplier is None else remote_multiplier
        return Decimal(str(value))
    return Decimal(1)


def compute_fee(
    base_hourly_rate: int,
    duration_minutes: int,
    consultation_type: ConsultationType,
    remote_multiplier: Optional[float] = None
) -> int:
    """base rate x hours x modality multiplier, rounded half up to whole units"""
    raw = (
        Decimal(base_hourly_rate)
        * Decimal(duration_minutes) / Decimal(60)
        * modality_multiplier(consultation_type, remote_multiplier)
    )
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def allowed_durations(slot: ScheduleSlot, multiples: Optional[Sequence[int]] = None) -> list:
    return [slot.duration_minutes * m for m in (multiples or settings.ALLOWED_DURATION_MULTIPLES)]


def covered_slot_times(start: datetime, duration_minutes: int, slot_minutes: int) -> List[time]:
    """Slot starts inside [start, start + duration) on the base slot grid"""
    return [
        (start + timedelta(minutes=offset)).time()
        for offset in range(0, duration_minutes, slot_minutes)
    ]


class BookingReservation:
    """Validates a slot selection and creates the booking atomically"""

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.booking_repo = BookingRepository(db)

    def validate(
        self,
        provider: Provider,
        schedule_slot: ScheduleSlot,
        calendar_date: date,
        consultation_type,
        duration_minutes: int
    ) -> datetime:
        """Check a selection and return its end as a datetime"""
        if schedule_slot.provider_id != provider.id:
            raise ValidationError(
                "Schedule does not belong to this doctor",
                details={"schedule_id": str(schedule_slot.id), "provider_id": str(provider.id)},
            )
        if not schedule_slot.is_active:
            raise ValidationError("Schedule is not active", details={"schedule_id": str(schedule_slot.id)})

        today = self.clock.today()
        if calendar_date < today:
            raise InvalidDateError(
                "Cannot book appointments for past dates",
                details={"date": calendar_date.isoformat()},
            )
        day_of_week = DayOfWeek.from_date(calendar_date)
        if day_of_week != DayOfWeek(schedule_slot.day_of_week):
            raise InvalidDateError(
                f"Schedule runs on {DayOfWeek(schedule_slot.day_of_week).value}, not {day_of_week.value}",
                details={"date": calendar_date.isoformat(), "day_of_week": day_of_week.value},
            )

        start = datetime.combine(calendar_date, schedule_slot.time_slot)
        if calendar_date == today and start <= self.clock.local_now():
            raise InvalidDateError(
                "This time slot has already passed",
                details={"date": calendar_date.isoformat(), "time": schedule_slot.time_slot.isoformat()},
            )

        try:
            consultation_type = ConsultationType(consultation_type)
        except ValueError:
            raise ValidationError(
                "Unknown consultation type",
                details={"consultation_type": str(consultation_type)},
            )

        durations = allowed_durations(schedule_slot)
        if duration_minutes not in durations:
            raise ValidationError(
                "Unsupported consultation duration",
                details={"duration_minutes": duration_minutes, "allowed": durations},
            )

        end = start + timedelta(minutes=duration_minutes)
        if end.date() != calendar_date:
            raise SlotOverflowError(
                details={
                    "start_time": schedule_slot.time_slot.isoformat(),
                    "duration_minutes": duration_minutes,
                }
            )
        return end

    async def reserve(
        self,
        user_id: uuid.UUID,
        provider: Provider,
        schedule_slot: ScheduleSlot,
        calendar_date: date,
        consultation_type: ConsultationType,
        duration_minutes: int,
        notes: Optional[str] = None
    ) -> Booking:
        """Create a PENDING_PAYMENT booking or raise SlotAlreadyTakenError"""
        end = self.validate(provider, schedule_slot, calendar_date, consultation_type, duration_minutes)
        consultation_type = ConsultationType(consultation_type)
        start = datetime.combine(calendar_date, schedule_slot.time_slot)
        # Every covered slot is held so a longer booking blocks the slots after its start
        hold_times = covered_slot_times(start, duration_minutes, schedule_slot.duration_minutes)

        booking = await self.booking_repo.create({
            "user_id": user_id,
            "provider_id": provider.id,
            "schedule_slot_id": schedule_slot.id,
            "booking_date": calendar_date,
            "start_time": schedule_slot.time_slot,
            "end_time": end.time(),
            "duration_minutes": duration_minutes,
            "consultation_type": consultation_type,
            "consultation_fee": compute_fee(provider.base_hourly_rate, duration_minutes, consultation_type),
            "notes": notes,
            "status": BookingStatus.PENDING_PAYMENT,
            "payment_status": PaymentStatus.PENDING,
            "version": 1,
        }, hold_times=hold_times)
        logger.info(
            f"Reserved booking {booking.id} for provider {provider.id} "
            f"on {calendar_date} {schedule_slot.time_slot} ({duration_minutes} min, fee {booking.consultation_fee})"
        )
        return booking
