from typing import Dict, Optional
import asyncio

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.celery_app import celery_app
from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import BaseCustomException
from app.domain.bookings.models import BookingStatus
from app.domain.bookings.repository import BookingRepository
from app.domain.payments.reconciler import PaymentReconciler
from app.infrastructure.database import build_engine, build_session_factory
from app.infrastructure.payment_gateway import MidtransGateway, PaymentGateway


async def sweep_bookings(
    session_factory: async_sessionmaker,
    gateway: PaymentGateway,
    clock: Clock = system_clock,
    reconciler: Optional[PaymentReconciler] = None
) -> Dict[str, int]:
    """Run one reconciliation step for every unsettled booking.

    Covers what the in-process reconcilers may have missed: lost tasks after
    a restart, missed notifications, reservations that never got a payment
    and expiries whose grace period ended while nothing was watching.
    """
    reconciler = reconciler or PaymentReconciler(session_factory, gateway, clock)
    async with session_factory() as db:
        repo = BookingRepository(db)
        pending = await repo.get_by_status(BookingStatus.PENDING_PAYMENT)
        overdue = await repo.get_unfinalized_expired(clock.now() - reconciler.grace)
        booking_ids = [b.id for b in pending] + [b.id for b in overdue]

    summary = {"checked": len(booking_ids), "errors": 0}
    for booking_id in booking_ids:
        try:
            booking = await reconciler.poll_once(booking_id)
        except BaseCustomException as e:
            summary["errors"] += 1
            logger.error(f"Sweep could not reconcile booking {booking_id}: {e.message}")
            continue
        if booking is not None:
            key = booking.status.value.lower()
            summary[key] = summary.get(key, 0) + 1

    logger.info(f"Reconciliation sweep finished: {summary}")
    return summary


async def _run_sweep() -> Dict[str, int]:
    # Each task run gets its own event loop, so it gets its own engine too
    engine = build_engine(settings.DATABASE_URL)
    gateway = MidtransGateway()
    try:
        return await sweep_bookings(build_session_factory(engine), gateway)
    finally:
        await gateway.aclose()
        await engine.dispose()


@celery_app.task(name="app.tasks.reconcile_pending_bookings")
def reconcile_pending_bookings():
    """
    Celery beat task: re-reconcile bookings that are still unsettled.
    """
    logger.info("Starting reconciliation sweep")
    return asyncio.run(_run_sweep())
