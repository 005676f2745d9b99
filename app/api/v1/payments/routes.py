"""
Payments API Routes

Payment attempts for bookings, the return-from-payment nudge and the
gateway notification webhook.
"""

from fastapi import APIRouter, Body, Depends, Query, status
from typing import Any, Dict, List, Optional
import uuid
import logging

from app.api.deps import (
    CurrentUser, get_clock, get_current_user, get_payment_gateway, get_supervisor
)
from app.core.exceptions import AuthenticationError, ConflictError, ExternalServiceError, NotFoundError
from app.infrastructure.database import get_db
from app.infrastructure.payment_gateway import map_transaction_status, verify_notification_signature
from app.domain.bookings.service import BookingService
from app.domain.payments.models import PaymentSessionStatus
from app.domain.payments.repository import PaymentSessionRepository
from app.domain.payments.session import PaymentSessionService
from app.api.v1.bookings.schemas import BookingOutcomeResponse, BookingResponse
from app.api.v1.bookings.routes import get_booking_service
from app.api.v1.payments.schemas import (
    CreatePaymentResponse, NotificationAck, PaymentResponse,
    PaymentReturnResponse, PaymentStatusResponse, payment_info
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_payment_service(
    db=Depends(get_db),
    gateway=Depends(get_payment_gateway),
    clock=Depends(get_clock)
) -> PaymentSessionService:
    return PaymentSessionService(db, gateway, clock)


@router.post("/create/{booking_id}", response_model=CreatePaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    booking_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
):
    """Open a new payment attempt for a booking awaiting payment"""
    payment = await service.create_payment(booking_id, current_user.id)
    return CreatePaymentResponse(message="Payment created", payment=payment_info(payment))


@router.get("/status/{order_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentSessionService = Depends(get_payment_service)
):
    payment = await payments.get_by_order_id(order_id, current_user.id)
    return PaymentStatusResponse(
        payment=PaymentResponse.model_validate(payment),
        booking=BookingResponse.from_booking(payment.booking),
    )


@router.get("/booking/{booking_id}", response_model=PaymentResponse)
async def get_payment_by_booking(
    booking_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentSessionService = Depends(get_payment_service)
):
    """Latest payment attempt of a booking"""
    return await payments.get_by_booking(booking_id, current_user.id)


@router.get("/history/booking", response_model=List[PaymentResponse])
async def get_booking_payment_history(
    status: Optional[PaymentSessionStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentSessionService = Depends(get_payment_service)
):
    return await payments.history(current_user.id, status, skip, limit)


@router.post("/cancel/{order_id}")
async def cancel_payment(
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentSessionService = Depends(get_payment_service),
    service: BookingService = Depends(get_booking_service)
):
    """Cancel an open payment together with its booking"""
    payment = await payments.get_by_order_id(order_id, current_user.id)
    if payment.status != PaymentSessionStatus.OPEN:
        raise ConflictError(
            "Payment is no longer open",
            details={"order_id": order_id, "status": payment.status.value},
        )
    await service.cancel_booking(payment.booking_id, current_user.id, "Payment cancelled by user")
    return {"message": "Payment cancelled", "order_id": order_id}


@router.post("/{booking_id}/return", response_model=PaymentReturnResponse)
async def payment_return(
    booking_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
):
    """The client closed the payment window; reconcile now instead of at the next poll"""
    await service.get_booking(booking_id, current_user.id)
    nudged = False
    if service.supervisor is not None:
        await service.supervisor.reconciler.poll_once(booking_id)
        nudged = service.supervisor.nudge(booking_id)
    outcome = await service.get_outcome(booking_id, current_user.id)
    return PaymentReturnResponse(nudged=nudged, outcome=BookingOutcomeResponse.model_validate(outcome))


@router.post("/notification", response_model=NotificationAck)
async def payment_notification(
    payload: Dict[str, Any] = Body(...),
    db=Depends(get_db),
    supervisor=Depends(get_supervisor)
):
    """Gateway push notification. Unauthenticated; trusted by signature only."""
    if not verify_notification_signature(payload):
        logger.warning(f"Rejected payment notification with bad signature for {payload.get('order_id')}")
        raise AuthenticationError("Invalid notification signature")

    order_id = str(payload.get("order_id", ""))
    payment = await PaymentSessionRepository(db).get_by_order_id(order_id)
    if not payment:
        raise NotFoundError("Payment not found", details={"order_id": order_id})
    if supervisor is None:
        raise ExternalServiceError("Payment reconciliation is not running")

    gateway_status = map_transaction_status(payload.get("transaction_status"), payload.get("fraud_status"))
    logger.info(f"Payment notification {order_id}: {payload.get('transaction_status')} -> {gateway_status.value}")
    await supervisor.reconciler.handle_gateway_status(payment.booking_id, gateway_status, order_id)
    if supervisor.is_running(payment.booking_id):
        supervisor.nudge(payment.booking_id)
    return NotificationAck(order_id=order_id)
