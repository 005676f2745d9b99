from dataclasses import dataclass
from datetime import date, datetime, time
from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.exceptions import InvalidDateError
from app.domain.bookings.repository import BookingRepository
from app.domain.providers.models import DayOfWeek
from app.domain.providers.service import ProviderService


@dataclass(frozen=True)
class AvailableSlot:
    """One schedule slot instantiated on a calendar date"""
    schedule_id: uuid.UUID
    time_slot: time
    duration_minutes: int
    is_available: bool
    unavailable_reason: Optional[str] = None


class AvailabilityResolver:
    """Bookable slots for a provider on a date.

    Taken slots stay in the result with is_available=False so the caller can
    show them as booked. Read-only; safe to run concurrently.
    """

    BOOKED = "BOOKED"
    PASSED = "PASSED"

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.provider_service = ProviderService(db)
        self.booking_repo = BookingRepository(db)

    async def resolve(self, provider_id: uuid.UUID, calendar_date: date) -> List[AvailableSlot]:
        today = self.clock.today()
        if calendar_date < today:
            raise InvalidDateError(
                "Cannot get slots for past dates",
                details={"date": calendar_date.isoformat()},
            )

        catalog = await self.provider_service.get_catalog(provider_id)
        day_of_week = DayOfWeek.from_date(calendar_date)
        held = await self.booking_repo.get_held_ranges(provider_id, calendar_date)
        now = self.clock.local_now() if calendar_date == today else None

        slots = []
        for slot in catalog.slots_for(day_of_week):
            if not slot.is_active:
                continue
            reason = None
            if any(start <= slot.time_slot < end for start, end in held):
                reason = self.BOOKED
            elif now is not None and datetime.combine(calendar_date, slot.time_slot) <= now:
                reason = self.PASSED
            slots.append(
                AvailableSlot(
                    schedule_id=slot.id,
                    time_slot=slot.time_slot,
                    duration_minutes=slot.duration_minutes,
                    is_available=reason is None,
                    unavailable_reason=reason,
                )
            )
        return slots
