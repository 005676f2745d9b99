"""
Bookings Repository Layer

Provides data access for bookings. Slot occupancy is enforced by unique
indexes on the bookings and booking_slot_holds tables, and state changes by
a version predicate on UPDATE; nothing here checks-then-acts.
"""

from typing import Iterable, Optional, List, Set, Tuple
from datetime import date, datetime, time
import uuid

from sqlalchemy import select, update, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    SlotAlreadyTakenError,
    StaleBookingError,
    handle_database_error,
)
from app.domain.bookings.models import Booking, BookingSlotHold, BookingStatus


class BookingRepository:
    """Repository for booking data access operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, booking_data: dict, hold_times: Iterable[time] = ()) -> Booking:
        """Insert a booking with its slot holds in one transaction.

        A slot already held by another booking surfaces as SlotAlreadyTakenError.
        """
        booking = Booking(**booking_data)
        self.db.add(booking)
        try:
            await self.db.flush()
            for slot_time in sorted(set(hold_times) | {booking.start_time}):
                self.db.add(
                    BookingSlotHold(
                        booking_id=booking.id,
                        provider_id=booking.provider_id,
                        booking_date=booking.booking_date,
                        slot_time=slot_time,
                    )
                )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            message = str(e.orig).lower()
            if "unique" in message or "uq_bookings_slot_hold" in message or "uq_booking_slot_holds_time" in message:
                raise SlotAlreadyTakenError(
                    details={
                        "provider_id": str(booking_data.get("provider_id")),
                        "booking_date": str(booking_data.get("booking_date")),
                        "start_time": str(booking_data.get("start_time")),
                        "end_time": str(booking_data.get("end_time")),
                    }
                ) from e
            raise handle_database_error(e, "create booking") from e
        await self.db.refresh(booking)
        return booking

    async def get_by_id(self, booking_id: uuid.UUID, fresh: bool = False) -> Optional[Booking]:
        """Get booking by ID; fresh bypasses values cached in the session"""
        query = select(Booking).where(Booking.id == booking_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_all(
        self,
        user_id: Optional[uuid.UUID] = None,
        provider_id: Optional[uuid.UUID] = None,
        status: Optional[BookingStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Booking]:
        """Get bookings with filtering, newest first"""
        query = select(Booking)
        if user_id:
            query = query.where(Booking.user_id == user_id)
        if provider_id:
            query = query.where(Booking.provider_id == provider_id)
        if status:
            query = query.where(Booking.status == status)
        result = await self.db.execute(
            query.order_by(Booking.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def get_held_slot_times(self, provider_id: uuid.UUID, booking_date: date) -> Set[time]:
        """Slot starts on a date covered by a booking that still holds them"""
        result = await self.db.execute(
            select(BookingSlotHold.slot_time).where(
                and_(
                    BookingSlotHold.provider_id == provider_id,
                    BookingSlotHold.booking_date == booking_date,
                )
            )
        )
        return set(result.scalars().all())

    async def get_held_ranges(self, provider_id: uuid.UUID, booking_date: date) -> List[Tuple[time, time]]:
        """[start, end) of every booking on a date that still holds its slot"""
        result = await self.db.execute(
            select(Booking.start_time, Booking.end_time).where(
                and_(
                    Booking.provider_id == provider_id,
                    Booking.booking_date == booking_date,
                    Booking.released_at.is_(None),
                )
            )
        )
        return [(start, end) for start, end in result.all()]

    async def get_by_status(self, status: BookingStatus, limit: int = 500) -> List[Booking]:
        result = await self.db.execute(
            select(Booking).where(Booking.status == status).order_by(Booking.created_at).limit(limit)
        )
        return list(result.scalars().all())

    async def get_unfinalized_expired(self, expired_before: datetime, limit: int = 500) -> List[Booking]:
        """EXPIRED bookings whose settlement window has closed but still hold their slot"""
        result = await self.db.execute(
            select(Booking).where(
                and_(
                    Booking.status == BookingStatus.EXPIRED,
                    Booking.expiry_finalized == False,  # noqa: E712
                    Booking.expired_at <= expired_before,
                )
            ).limit(limit)
        )
        return list(result.scalars().all())

    async def apply_transition(self, transition) -> Booking:
        """Compare-and-swap a planned transition on the booking's version"""
        values = dict(transition.values)
        values["version"] = Booking.version + 1
        result = await self.db.execute(
            update(Booking)
            .where(
                and_(
                    Booking.id == transition.booking_id,
                    Booking.version == transition.from_version,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise StaleBookingError(
                details={
                    "booking_id": str(transition.booking_id),
                    "expected_version": transition.from_version,
                    "event": transition.event.value,
                }
            )
        if values.get("released_at") is not None:
            await self.db.execute(
                delete(BookingSlotHold).where(BookingSlotHold.booking_id == transition.booking_id)
            )
        await self.db.commit()
        return await self.get_by_id(transition.booking_id, fresh=True)
