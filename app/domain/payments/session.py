"""
Payments Service Layer

Opens and closes gateway payment attempts for pending bookings.
"""

from datetime import timedelta
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
    PaymentGatewayError,
    handle_external_service_error,
)
from app.domain.bookings.models import Booking, BookingStatus
from app.domain.payments.models import PaymentSession, PaymentSessionStatus
from app.domain.payments.repository import PaymentSessionRepository
from app.infrastructure.payment_gateway import PaymentGateway


def build_order_id(booking_id: uuid.UUID, attempt: int) -> str:
    return f"BK-{booking_id.hex}-{attempt}"


def payment_amount(booking: Booking) -> int:
    return booking.consultation_fee + settings.ADMIN_FEE


class PaymentSessionService:
    """Service layer for payment attempts"""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, clock: Clock = system_clock):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.payment_repo = PaymentSessionRepository(db)

    async def open(self, booking: Booking) -> PaymentSession:
        """Open a gateway payment attempt for a PENDING_PAYMENT booking.

        Every attempt gets a fresh order id. The OPEN row is claimed before
        the gateway is called so two concurrent opens cannot both reach the
        gateway; if the gateway stays unavailable the attempt is closed as
        ERROR and PaymentServiceUnavailableError is raised.
        """
        if booking.status != BookingStatus.PENDING_PAYMENT:
            raise ConflictError(
                "Booking is not awaiting payment",
                details={"booking_id": str(booking.id), "status": booking.status.value},
            )
        if await self.payment_repo.has_open_session(booking.id):
            raise ConflictError(
                "Booking already has a payment in progress",
                details={"booking_id": str(booking.id)},
            )

        attempt = await self.payment_repo.count_attempts(booking.id) + 1
        order_id = build_order_id(booking.id, attempt)
        amount = payment_amount(booking)
        payment = await self.payment_repo.create({
            "booking_id": booking.id,
            "order_id": order_id,
            "attempt": attempt,
            "amount": amount,
            "status": PaymentSessionStatus.OPEN,
        })

        try:
            handle = await self.gateway.create_session(
                order_id, amount, timedelta(minutes=settings.PAYMENT_EXPIRY_MINUTES)
            )
        except PaymentGatewayError as e:
            await self.payment_repo.update(payment, {
                "status": PaymentSessionStatus.ERROR,
                "failure_reason": e.message[:255],
            })
            raise handle_external_service_error(e, "payment gateway", "create_session") from e

        payment = await self.payment_repo.update(payment, {
            "snap_token": handle.handle,
            "snap_redirect_url": handle.redirect_url,
            "expiry_at": handle.expiry_at,
        })
        logger.info(
            f"Opened payment {order_id} for booking {booking.id}: amount {amount}, "
            f"expires {payment.expiry_at.isoformat()}"
        )
        return payment

    async def cancel_open(self, booking: Booking) -> Optional[PaymentSession]:
        """Cancel the booking's OPEN attempt at the gateway and close it locally.

        Gateway failures propagate so the booking is not cancelled while the
        customer can still pay.
        """
        payment = await self.payment_repo.get_open_for_booking(booking.id)
        if not payment:
            return None
        try:
            await self.gateway.cancel_session(payment.order_id)
        except PaymentGatewayError as e:
            raise handle_external_service_error(e, "payment gateway", "cancel_session") from e
        return await self.close(payment, PaymentSessionStatus.CANCELLED)

    async def close(
        self,
        payment: PaymentSession,
        status: PaymentSessionStatus,
        **extra
    ) -> PaymentSession:
        values = {"status": status}
        values.update(extra)
        if status == PaymentSessionStatus.PAID and "paid_at" not in values:
            values["paid_at"] = self.clock.now()
        updated = await self.payment_repo.update(payment, values)
        logger.info(f"Payment {payment.order_id} closed as {status.value}")
        return updated

    async def get_by_order_id(self, order_id: str, user_id: Optional[uuid.UUID] = None) -> PaymentSession:
        payment = await self.payment_repo.get_by_order_id(order_id)
        if not payment:
            raise NotFoundError("Payment not found", details={"order_id": order_id})
        self._check_owner(payment, user_id)
        return payment

    async def get_by_booking(self, booking_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> PaymentSession:
        """Latest attempt for a booking"""
        payment = await self.payment_repo.get_latest_for_booking(booking_id)
        if not payment:
            raise NotFoundError("Payment not found", details={"booking_id": str(booking_id)})
        self._check_owner(payment, user_id)
        return payment

    async def get_open(self, booking_id: uuid.UUID) -> Optional[PaymentSession]:
        return await self.payment_repo.get_open_for_booking(booking_id)

    async def history(
        self,
        user_id: uuid.UUID,
        status: Optional[PaymentSessionStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[PaymentSession]:
        return await self.payment_repo.get_history(user_id, status, skip, limit)

    @staticmethod
    def _check_owner(payment: PaymentSession, user_id: Optional[uuid.UUID]) -> None:
        if user_id is not None and payment.booking.user_id != user_id:
            raise AuthorizationError("Not authorized to access this payment")
