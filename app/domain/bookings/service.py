"""
Bookings Service Layer

Orchestrates the booking flow for the HTTP API: reserve a slot, open its
payment, hand it to the reconciler, and report how it ended.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import List, Optional
import uuid

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PaymentServiceUnavailableError,
    ValidationError,
)
from app.domain.bookings.lifecycle import BookingEvent, BookingLifecycle
from app.domain.bookings.models import Booking, BookingStatus, ConsultationType, PaymentStatus
from app.domain.bookings.repository import BookingRepository
from app.domain.bookings.reservation import BookingReservation
from app.domain.payments.models import PaymentSession, PaymentSessionStatus
from app.domain.payments.reconciler import ReconcilerSupervisor
from app.domain.payments.session import PaymentSessionService
from app.domain.providers.service import ProviderService
from app.infrastructure.payment_gateway import PaymentGateway


class OutcomeReason:
    """Reason codes reported for a booking that is not confirmed"""
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    CANCELLED = "CANCELLED"
    PENDING = "PENDING"
    PAYMENT_SERVICE_UNAVAILABLE = "PAYMENT_SERVICE_UNAVAILABLE"


class NextAction:
    WAIT = "WAIT"
    RETRY = "RETRY"
    START_OVER = "START_OVER"
    NONE = "NONE"


@dataclass(frozen=True)
class BookingReceipt:
    booking_id: uuid.UUID
    provider_name: str
    booking_date: date
    start_time: time
    end_time: time
    amount: int


@dataclass(frozen=True)
class BookingOutcome:
    booking_id: uuid.UUID
    status: BookingStatus
    payment_status: PaymentStatus
    reason: Optional[str] = None
    next_action: str = NextAction.NONE
    receipt: Optional[BookingReceipt] = None


@dataclass
class BookingCreation:
    booking: Booking
    payment: Optional[PaymentSession] = None
    payment_error: Optional[PaymentServiceUnavailableError] = None


class BookingService:
    """Service layer for the booking flow"""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        supervisor: Optional[ReconcilerSupervisor] = None,
        clock: Clock = system_clock
    ):
        self.db = db
        self.gateway = gateway
        self.supervisor = supervisor
        self.clock = clock
        self.booking_repo = BookingRepository(db)
        self.provider_service = ProviderService(db)
        self.payments = PaymentSessionService(db, gateway, clock)

    async def create_booking(
        self,
        user_id: uuid.UUID,
        provider_id: uuid.UUID,
        schedule_id: uuid.UUID,
        booking_date: date,
        consultation_type: ConsultationType,
        duration_minutes: int,
        notes: Optional[str] = None
    ) -> BookingCreation:
        """Reserve a slot and open its first payment attempt.

        A gateway outage does not undo the reservation: the booking stays
        PENDING_PAYMENT, the error is returned alongside it and payment can
        be retried until the reservation hold runs out.
        """
        provider = await self.provider_service.get_provider(provider_id)
        if not provider.is_available:
            raise ValidationError("Doctor is not accepting bookings", details={"provider_id": str(provider_id)})
        slot = await self.provider_service.get_slot(provider_id, schedule_id)

        booking = await BookingReservation(self.db, self.clock).reserve(
            user_id=user_id,
            provider=provider,
            schedule_slot=slot,
            calendar_date=booking_date,
            consultation_type=consultation_type,
            duration_minutes=duration_minutes,
            notes=notes,
        )

        creation = BookingCreation(booking=booking)
        try:
            creation.payment = await self.payments.open(booking)
        except PaymentServiceUnavailableError as e:
            logger.warning(f"Booking {booking.id} reserved without a payment: {e.message}")
            creation.payment_error = e

        if self.supervisor is not None:
            self.supervisor.start(booking.id)
        return creation

    async def create_payment(self, booking_id: uuid.UUID, user_id: uuid.UUID) -> PaymentSession:
        """Open a new payment attempt, e.g. after the gateway was unavailable"""
        booking = await self.get_booking(booking_id, user_id)
        payment = await self.payments.open(booking)
        if self.supervisor is not None:
            self.supervisor.start(booking.id)
        return payment

    async def get_booking(self, booking_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> Booking:
        booking = await self.booking_repo.get_by_id(booking_id, fresh=True)
        if not booking:
            raise NotFoundError("Booking not found", details={"booking_id": str(booking_id)})
        if user_id is not None and booking.user_id != user_id:
            raise AuthorizationError("Not authorized to access this booking")
        return booking

    async def get_my_bookings(
        self,
        user_id: uuid.UUID,
        status: Optional[BookingStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Booking]:
        return await self.booking_repo.get_all(user_id=user_id, status=status, skip=skip, limit=limit)

    async def cancel_booking(
        self,
        booking_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None
    ) -> Booking:
        """Cancel a PENDING_PAYMENT booking and release its slot.

        The open payment is cancelled at the gateway first; if that fails the
        booking is left as it is so a payment cannot land on a cancelled booking.
        """
        booking = await self.get_booking(booking_id, user_id)

        if self.supervisor is not None:
            async with self.supervisor.reconciler.locked(booking_id):
                booking = await self._cancel(booking_id, reason)
            await self.supervisor.cancel(booking_id)
        else:
            booking = await self._cancel(booking_id, reason)

        logger.info(f"Booking {booking.id} cancelled by user: {reason or 'no reason given'}")
        return booking

    async def _cancel(self, booking_id: uuid.UUID, reason: Optional[str]) -> Booking:
        booking = await self.booking_repo.get_by_id(booking_id, fresh=True)
        if booking.status != BookingStatus.PENDING_PAYMENT:
            raise ConflictError(
                "Only bookings awaiting payment can be cancelled",
                details={"booking_id": str(booking_id), "status": booking.status.value},
            )
        await self.payments.cancel_open(booking)
        return await BookingLifecycle(self.db, self.clock).transition(
            booking, BookingEvent.CANCEL, reason or "Cancelled by user"
        )

    async def get_outcome(self, booking_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> BookingOutcome:
        booking = await self.get_booking(booking_id, user_id)
        return await self.outcome_for(booking)

    async def outcome_for(self, booking: Booking) -> BookingOutcome:
        status = BookingStatus(booking.status)
        payment_status = PaymentStatus(booking.payment_status)

        if status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
            return BookingOutcome(
                booking_id=booking.id,
                status=status,
                payment_status=payment_status,
                receipt=BookingReceipt(
                    booking_id=booking.id,
                    provider_name=booking.provider.name,
                    booking_date=booking.booking_date,
                    start_time=booking.start_time,
                    end_time=booking.end_time,
                    amount=booking.consultation_fee + settings.ADMIN_FEE,
                ),
            )

        if status == BookingStatus.EXPIRED:
            reason, action = OutcomeReason.PAYMENT_EXPIRED, NextAction.START_OVER
        elif status == BookingStatus.CANCELLED and payment_status == PaymentStatus.FAILED:
            reason, action = OutcomeReason.PAYMENT_FAILED, NextAction.RETRY
        elif status == BookingStatus.CANCELLED:
            reason, action = OutcomeReason.CANCELLED, NextAction.START_OVER
        else:
            latest = await self.payments.payment_repo.get_latest_for_booking(booking.id)
            if latest is None or latest.status == PaymentSessionStatus.ERROR:
                reason, action = OutcomeReason.PAYMENT_SERVICE_UNAVAILABLE, NextAction.RETRY
            else:
                reason, action = OutcomeReason.PENDING, NextAction.WAIT

        return BookingOutcome(
            booking_id=booking.id,
            status=status,
            payment_status=payment_status,
            reason=reason,
            next_action=action,
        )
