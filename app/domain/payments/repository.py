"""
Payments Repository Layer

Data access for payment sessions. The uq_payment_sessions_open index keeps a
booking to one OPEN attempt; a second insert surfaces as ConflictError.
"""

from typing import Optional, List
import uuid

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, handle_database_error
from app.domain.bookings.models import Booking
from app.domain.payments.models import PaymentSession, PaymentSessionStatus


class PaymentSessionRepository:
    """Repository for payment session data access operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, session_data: dict) -> PaymentSession:
        payment = PaymentSession(**session_data)
        self.db.add(payment)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if "unique" in str(e.orig).lower():
                raise ConflictError(
                    "Booking already has a payment in progress",
                    details={"booking_id": str(session_data.get("booking_id"))},
                ) from e
            raise handle_database_error(e, "create payment session") from e
        await self.db.refresh(payment)
        return payment

    async def get_by_id(self, session_id: uuid.UUID) -> Optional[PaymentSession]:
        result = await self.db.execute(select(PaymentSession).where(PaymentSession.id == session_id))
        return result.scalar_one_or_none()

    async def get_by_order_id(self, order_id: str) -> Optional[PaymentSession]:
        result = await self.db.execute(
            select(PaymentSession)
            .where(PaymentSession.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_open_for_booking(self, booking_id: uuid.UUID) -> Optional[PaymentSession]:
        result = await self.db.execute(
            select(PaymentSession)
            .where(
                and_(
                    PaymentSession.booking_id == booking_id,
                    PaymentSession.status == PaymentSessionStatus.OPEN,
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_latest_for_booking(self, booking_id: uuid.UUID) -> Optional[PaymentSession]:
        result = await self.db.execute(
            select(PaymentSession)
            .where(PaymentSession.booking_id == booking_id)
            .order_by(PaymentSession.attempt.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_attempts(self, booking_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.max(PaymentSession.attempt)).where(PaymentSession.booking_id == booking_id)
        )
        return result.scalar() or 0

    async def get_history(
        self,
        user_id: uuid.UUID,
        status: Optional[PaymentSessionStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[PaymentSession]:
        """Payment attempts across all of a user's bookings, newest first"""
        query = select(PaymentSession).join(Booking, PaymentSession.booking_id == Booking.id).where(
            Booking.user_id == user_id
        )
        if status:
            query = query.where(PaymentSession.status == status)
        result = await self.db.execute(
            query.order_by(PaymentSession.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.unique().scalars().all())

    async def has_open_session(self, booking_id: uuid.UUID) -> bool:
        return await self.get_open_for_booking(booking_id) is not None

    async def update(self, payment: PaymentSession, update_data: dict) -> PaymentSession:
        for field, value in update_data.items():
            if hasattr(payment, field):
                setattr(payment, field, value)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise handle_database_error(e, "update payment session") from e
        await self.db.refresh(payment)
        return payment
