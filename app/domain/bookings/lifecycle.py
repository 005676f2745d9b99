"""
Booking lifecycle state machine.

    PENDING_PAYMENT --PAYMENT_PAID-->    CONFIRMED / PAID
    PENDING_PAYMENT --PAYMENT_FAILED-->  CANCELLED / FAILED
    PENDING_PAYMENT --PAYMENT_EXPIRED--> EXPIRED / EXPIRED   (slot still held)
    PENDING_PAYMENT --CANCEL-->          CANCELLED / CANCELLED
    CONFIRMED       --COMPLETE-->        COMPLETED / PAID
    EXPIRED         --PAYMENT_PAID-->    CONFIRMED / PAID    (only before finalization)
    EXPIRED         --FINALIZE_EXPIRY--> EXPIRED / EXPIRED   (slot released)

Everything else raises IllegalTransitionError. A payment that arrives after
the expiry window has been finalized is therefore rejected here and must be
handled as a refund by the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import enum

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.exceptions import IllegalTransitionError
from app.domain.bookings.models import Booking, BookingStatus, PaymentStatus


class BookingEvent(str, enum.Enum):
    """Events accepted by the lifecycle"""
    PAYMENT_PAID = "PAYMENT_PAID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    CANCEL = "CANCEL"
    COMPLETE = "COMPLETE"
    FINALIZE_EXPIRY = "FINALIZE_EXPIRY"


@dataclass(frozen=True)
class Transition:
    """A planned state change, applied only if the booking is still at from_version"""
    booking_id: Any
    event: BookingEvent
    from_status: BookingStatus
    to_status: BookingStatus
    from_version: int
    values: Dict[str, Any] = field(default_factory=dict)


def plan_transition(
    booking: Booking,
    event: BookingEvent,
    at: datetime,
    reason: Optional[str] = None
) -> Transition:
    """Compute the next state of a booking without touching storage"""
    status = BookingStatus(booking.status)
    values: Dict[str, Any]

    if status == BookingStatus.PENDING_PAYMENT:
        if event == BookingEvent.PAYMENT_PAID:
            values = {
                "status": BookingStatus.CONFIRMED,
                "payment_status": PaymentStatus.PAID,
                "confirmed_at": at,
            }
        elif event == BookingEvent.PAYMENT_FAILED:
            values = {
                "status": BookingStatus.CANCELLED,
                "payment_status": PaymentStatus.FAILED,
                "cancellation_reason": reason or "Payment failed",
                "released_at": at,
            }
        elif event == BookingEvent.PAYMENT_EXPIRED:
            values = {
                "status": BookingStatus.EXPIRED,
                "payment_status": PaymentStatus.EXPIRED,
                "expired_at": at,
            }
        elif event == BookingEvent.CANCEL:
            values = {
                "status": BookingStatus.CANCELLED,
                "payment_status": PaymentStatus.CANCELLED,
                "cancellation_reason": reason,
                "released_at": at,
            }
        else:
            raise _illegal(booking, event)

    elif status == BookingStatus.CONFIRMED and event == BookingEvent.COMPLETE:
        values = {"status": BookingStatus.COMPLETED}

    elif status == BookingStatus.EXPIRED and not booking.expiry_finalized:
        if event == BookingEvent.PAYMENT_PAID:
            # Money received inside the settlement window wins over the deadline
            values = {
                "status": BookingStatus.CONFIRMED,
                "payment_status": PaymentStatus.PAID,
                "confirmed_at": at,
            }
        elif event == BookingEvent.FINALIZE_EXPIRY:
            values = {"expiry_finalized": True, "released_at": at}
        else:
            raise _illegal(booking, event)

    else:
        raise _illegal(booking, event)

    return Transition(
        booking_id=booking.id,
        event=event,
        from_status=status,
        to_status=values.get("status", status),
        from_version=booking.version,
        values=values,
    )


def _illegal(booking: Booking, event: BookingEvent) -> IllegalTransitionError:
    return IllegalTransitionError(
        message=f"Cannot apply {event.value} to booking in status {booking.status.value}",
        details={
            "booking_id": str(booking.id),
            "status": booking.status.value,
            "expiry_finalized": bool(booking.expiry_finalized),
            "event": event.value,
        },
    )


class BookingLifecycle:
    """Single entry point for booking state changes.

    Every change is a versioned compare-and-swap; losing the race raises
    StaleBookingError from the repository.
    """

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        from app.domain.bookings.repository import BookingRepository

        self.db = db
        self.clock = clock
        self.booking_repo = BookingRepository(db)

    async def transition(
        self,
        booking: Booking,
        event: BookingEvent,
        reason: Optional[str] = None
    ) -> Booking:
        planned = plan_transition(booking, event, self.clock.now(), reason)
        updated = await self.booking_repo.apply_transition(planned)
        logger.info(
            f"Booking {booking.id} {planned.from_status.value} -> {planned.to_status.value} "
            f"on {event.value} (v{planned.from_version} -> v{updated.version})"
        )
        return updated
