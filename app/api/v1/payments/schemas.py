"""
Payments API Schemas
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import Optional
from datetime import datetime
import uuid
from app.api.v1.bookings.schemas import BookingOutcomeResponse, BookingResponse, PaymentInfo
from app.domain.payments.models import PaymentSession, PaymentSessionStatus


class PaymentResponse(BaseModel):
    """Schema for one payment attempt"""
    id: uuid.UUID
    order_id: str
    booking_id: uuid.UUID
    attempt: int
    amount: int
    payment_type: str
    status: PaymentSessionStatus
    snap_token: Optional[str] = None
    snap_redirect_url: Optional[str] = None
    expiry_time: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("expiry_time", "expiry_at")
    )
    paid_at: Optional[datetime] = None
    late_payment: bool = False
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentStatusResponse(BaseModel):
    payment: PaymentResponse
    booking: Optional[BookingResponse] = None


class CreatePaymentResponse(BaseModel):
    message: str
    payment: PaymentInfo


class PaymentReturnResponse(BaseModel):
    """Answer to the client coming back from the payment window"""
    nudged: bool
    outcome: BookingOutcomeResponse


class NotificationAck(BaseModel):
    status: str = "ok"
    order_id: Optional[str] = None


def payment_info(payment: PaymentSession) -> PaymentInfo:
    return PaymentInfo(
        order_id=payment.order_id,
        amount=payment.amount,
        expiry_time=payment.expiry_at,
        snap_token=payment.snap_token,
        snap_redirect_url=payment.snap_redirect_url,
    )
