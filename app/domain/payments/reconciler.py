"""
Payment reconciliation.

A PaymentReconciler resolves a PENDING_PAYMENT booking to CONFIRMED,
CANCELLED or EXPIRED from three inputs: gateway polls, gateway push
notifications and the payment deadline. Every change goes through
BookingLifecycle, so each one is a compare-and-swap on the booking version.

PAID beats EXPIRED. An expired booking keeps its slot for the settlement
grace period and a PAID signal inside that window confirms it. Once the
window closes the expiry is finalized: the gateway order is cancelled, the
slot released and the owner notified. A PAID signal after that point cannot
confirm the booking any more; it is recorded as a late payment for refund.

ReconcilerSupervisor runs one asyncio task per in-flight booking and can
cancel or nudge it.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional
import asyncio
import uuid

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import IllegalTransitionError, PaymentGatewayError, StaleBookingError
from app.domain.bookings.lifecycle import BookingEvent, BookingLifecycle
from app.domain.bookings.models import Booking, BookingStatus, PaymentStatus
from app.domain.bookings.repository import BookingRepository
from app.domain.payments.models import PaymentSession, PaymentSessionStatus
from app.domain.payments.session import PaymentSessionService
from app.infrastructure.notifications import notify_booking_outcome
from app.infrastructure.payment_gateway import GatewayPaymentStatus, PaymentGateway

Notifier = Callable[[Booking], Awaitable[object]]

MAX_CAS_ATTEMPTS = 3


class BookingLock:
    """An asyncio.Lock plus the number of coroutines holding or awaiting it"""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


def is_settled(booking: Booking) -> bool:
    """True once nothing can change the booking's outcome any more"""
    if booking.status == BookingStatus.PENDING_PAYMENT:
        return False
    if booking.status == BookingStatus.EXPIRED and not booking.expiry_finalized:
        return False
    return True


class PaymentReconciler:
    """Applies gateway signals and deadlines to bookings.

    Each call opens its own database session, so a reconciler can be shared
    by request handlers, background tasks and the periodic sweep.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        gateway: PaymentGateway,
        clock: Clock = system_clock,
        notifier: Optional[Notifier] = None,
        poll_interval: Optional[float] = None,
        grace_seconds: Optional[float] = None,
        hold_minutes: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.clock = clock
        self.notifier = notifier or notify_booking_outcome
        self.poll_interval = poll_interval if poll_interval is not None else settings.PAYMENT_POLL_INTERVAL_SECONDS
        self.grace = timedelta(
            seconds=grace_seconds if grace_seconds is not None else settings.EXPIRY_SETTLEMENT_GRACE_SECONDS
        )
        self.hold = timedelta(
            minutes=hold_minutes if hold_minutes is not None else settings.RESERVATION_HOLD_MINUTES
        )
        self._locks: Dict[uuid.UUID, BookingLock] = {}

    @asynccontextmanager
    async def locked(self, booking_id: uuid.UUID):
        """Serializes transition application for one booking in this process.

        The entry is dropped when its last holder or waiter leaves.
        """
        entry = self._locks.get(booking_id)
        if entry is None:
            entry = self._locks[booking_id] = BookingLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(booking_id) is entry:
                del self._locks[booking_id]

    # Signals

    async def handle_gateway_status(
        self,
        booking_id: uuid.UUID,
        status: GatewayPaymentStatus,
        order_id: Optional[str] = None
    ) -> Optional[Booking]:
        """Apply one status report from the gateway, pushed or polled"""
        async with self.locked(booking_id):
            async with self.session_factory() as db:
                return await self._apply_status(db, booking_id, status, order_id)

    async def expire(self, booking_id: uuid.UUID) -> Optional[Booking]:
        """The payment deadline has passed"""
        async with self.locked(booking_id):
            async with self.session_factory() as db:
                return await self._expire(db, booking_id)

    async def finalize_expiry(self, booking_id: uuid.UUID) -> Optional[Booking]:
        """Run the external effects of an expiry whose grace period is over"""
        async with self.locked(booking_id):
            async with self.session_factory() as db:
                return await self._finalize(db, booking_id)

    async def poll_once(self, booking_id: uuid.UUID) -> Optional[Booking]:
        """One reconciliation step: read the gateway, then enforce deadlines"""
        async with self.locked(booking_id):
            async with self.session_factory() as db:
                booking = await BookingRepository(db).get_by_id(booking_id, fresh=True)
                if booking is None:
                    logger.warning(f"Reconciler: booking {booking_id} no longer exists")
                    return None
                if is_settled(booking):
                    return booking

                payments = PaymentSessionService(db, self.gateway, self.clock)
                now = self.clock.now()

                if booking.status == BookingStatus.EXPIRED:
                    if now >= booking.expired_at + self.grace:
                        return await self._finalize(db, booking_id)
                    # Inside the grace window only money can change the outcome
                    payment = await payments.payment_repo.get_latest_for_booking(booking_id)
                    if payment is not None:
                        status = await self._read_status(payment.order_id)
                        if status == GatewayPaymentStatus.PAID:
                            return await self._apply_status(db, booking_id, status, payment.order_id)
                    return booking

                payment = await payments.get_open(booking_id)
                if payment is None or payment.expiry_at is None:
                    if now >= booking.created_at + self.hold:
                        logger.info(f"Reservation {booking_id} was never paid for, expiring it")
                        return await self._expire(db, booking_id)
                    return booking

                status = await self._read_status(payment.order_id)
                if status is not None and status != GatewayPaymentStatus.PENDING:
                    booking = await self._apply_status(db, booking_id, status, payment.order_id)
                    if booking is None or booking.status != BookingStatus.PENDING_PAYMENT:
                        return booking

                if self.clock.now() >= payment.expiry_at:
                    return await self._expire(db, booking_id)
                return booking

    # Internals; callers hold the booking lock

    async def _read_status(self, order_id: str) -> Optional[GatewayPaymentStatus]:
        try:
            return await self.gateway.get_status(order_id)
        except PaymentGatewayError as e:
            # Unknown is not FAILED; try again on the next tick
            logger.warning(f"Reconciler: status of {order_id} unavailable: {e.message}")
            return None

    async def _apply_status(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        status: GatewayPaymentStatus,
        order_id: Optional[str]
    ) -> Optional[Booking]:
        booking_repo = BookingRepository(db)
        payments = PaymentSessionService(db, self.gateway, self.clock)
        lifecycle = BookingLifecycle(db, self.clock)

        for _ in range(MAX_CAS_ATTEMPTS):
            booking = await booking_repo.get_by_id(booking_id, fresh=True)
            if booking is None:
                logger.warning(f"Reconciler: booking {booking_id} no longer exists")
                return None
            payment = await self._payment_for(payments, booking_id, order_id)

            if status == GatewayPaymentStatus.PENDING:
                return booking

            try:
                if status == GatewayPaymentStatus.PAID:
                    return await self._apply_paid(payments, lifecycle, booking, payment)
                return await self._apply_unpaid(payments, lifecycle, booking, payment, status)
            except StaleBookingError:
                logger.info(f"Reconciler: booking {booking_id} changed underneath {status.value}, re-reading")

        raise StaleBookingError(details={"booking_id": str(booking_id), "signal": status.value})

    async def _payment_for(
        self,
        payments: PaymentSessionService,
        booking_id: uuid.UUID,
        order_id: Optional[str]
    ) -> Optional[PaymentSession]:
        if order_id:
            return await payments.payment_repo.get_by_order_id(order_id)
        return await payments.get_open(booking_id)

    async def _apply_paid(
        self,
        payments: PaymentSessionService,
        lifecycle: BookingLifecycle,
        booking: Booking,
        payment: Optional[PaymentSession]
    ) -> Booking:
        if (
            booking.payment_status == PaymentStatus.PAID
            and payment is not None
            and payment.status == PaymentSessionStatus.PAID
        ):
            logger.debug(f"Reconciler: PAID for booking {booking.id} already applied")
            return booking

        try:
            booking = await lifecycle.transition(booking, BookingEvent.PAYMENT_PAID)
        except IllegalTransitionError:
            if payment is not None:
                await payments.close(payment, PaymentSessionStatus.PAID, late_payment=True)
            logger.error(
                f"Late payment on booking {booking.id} ({booking.status.value}) "
                f"order {payment.order_id if payment else 'unknown'}: refund required"
            )
            return booking

        if payment is not None:
            await payments.close(payment, PaymentSessionStatus.PAID)
        await self._notify(booking)
        return booking

    async def _apply_unpaid(
        self,
        payments: PaymentSessionService,
        lifecycle: BookingLifecycle,
        booking: Booking,
        payment: Optional[PaymentSession],
        status: GatewayPaymentStatus
    ) -> Booking:
        if booking.status != BookingStatus.PENDING_PAYMENT or (payment is not None and not payment.is_open):
            # Echo of an attempt that is already closed, e.g. the cancel notification after a manual cancel
            logger.info(
                f"Reconciler: ignoring {status.value} for booking {booking.id} in {booking.status.value}"
            )
            return booking

        if status == GatewayPaymentStatus.FAILED:
            booking = await lifecycle.transition(booking, BookingEvent.PAYMENT_FAILED)
            if payment is not None:
                await payments.close(payment, PaymentSessionStatus.FAILED, failure_reason="Payment failed")
            await self._notify(booking)
            return booking

        booking = await lifecycle.transition(booking, BookingEvent.PAYMENT_EXPIRED)
        if payment is not None:
            await payments.close(payment, PaymentSessionStatus.EXPIRED)
        return booking

    async def _expire(self, db: AsyncSession, booking_id: uuid.UUID) -> Optional[Booking]:
        booking = await BookingRepository(db).get_by_id(booking_id, fresh=True)
        if booking is None or booking.status != BookingStatus.PENDING_PAYMENT:
            return booking

        payments = PaymentSessionService(db, self.gateway, self.clock)
        payment = await payments.get_open(booking_id)
        if payment is not None:
            # Last look before giving up on the payment
            last = await self._read_status(payment.order_id)
            if last == GatewayPaymentStatus.PAID:
                return await self._apply_status(db, booking_id, last, payment.order_id)

        logger.info(f"Reconciler: payment deadline passed for booking {booking_id}")
        return await self._apply_status(db, booking_id, GatewayPaymentStatus.EXPIRED, None)

    async def _finalize(self, db: AsyncSession, booking_id: uuid.UUID) -> Optional[Booking]:
        booking_repo = BookingRepository(db)
        booking = await booking_repo.get_by_id(booking_id, fresh=True)
        if booking is None or booking.status != BookingStatus.EXPIRED or booking.expiry_finalized:
            return booking

        payments = PaymentSessionService(db, self.gateway, self.clock)
        payment = await payments.payment_repo.get_latest_for_booking(booking_id)
        if payment is not None:
            last = await self._read_status(payment.order_id)
            if last == GatewayPaymentStatus.PAID:
                return await self._apply_status(db, booking_id, last, payment.order_id)
            try:
                await self.gateway.cancel_session(payment.order_id)
            except PaymentGatewayError as e:
                logger.warning(f"Reconciler: could not cancel {payment.order_id} at the gateway: {e.message}")

        booking = await booking_repo.get_by_id(booking_id, fresh=True)
        booking = await BookingLifecycle(db, self.clock).transition(booking, BookingEvent.FINALIZE_EXPIRY)
        await self._notify(booking)
        return booking

    async def _notify(self, booking: Booking) -> None:
        try:
            await self.notifier(booking)
        except Exception as e:
            logger.error(f"Failed to send outcome notification for booking {booking.id}: {e}")

    # Driving loop

    def _next_deadline(self, booking: Booking, expiry_at: Optional[datetime]) -> Optional[datetime]:
        if booking.status == BookingStatus.EXPIRED:
            return booking.expired_at + self.grace
        if expiry_at is not None:
            return expiry_at
        return booking.created_at + self.hold

    async def _deadline_for(self, booking: Booking) -> Optional[datetime]:
        async with self.session_factory() as db:
            payment = await PaymentSessionService(db, self.gateway, self.clock).get_open(booking.id)
        return self._next_deadline(booking, payment.expiry_at if payment else None)

    async def run(self, booking_id: uuid.UUID, wakeup: Optional[asyncio.Event] = None) -> Optional[Booking]:
        """Reconcile until the booking is settled.

        Sleeps for the poll interval, or less when a deadline is closer;
        setting wakeup cuts the sleep short.
        """
        wakeup = wakeup or asyncio.Event()
        logger.info(f"Reconciler started for booking {booking_id}")
        booking = None
        try:
            while True:
                try:
                    booking = await self.poll_once(booking_id)
                except StaleBookingError:
                    booking = None
                    logger.info(f"Reconciler: lost a race on booking {booking_id}, retrying")
                else:
                    if booking is None or is_settled(booking):
                        break

                delay = self.poll_interval
                if booking is not None:
                    deadline = await self._deadline_for(booking)
                    if deadline is not None:
                        remaining = (deadline - self.clock.now()).total_seconds()
                        delay = max(0.0, min(delay, remaining))

                try:
                    await asyncio.wait_for(wakeup.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                wakeup.clear()
        except IllegalTransitionError:
            logger.error(f"Reconciler for booking {booking_id} stopped on an illegal transition")
            raise
        logger.info(
            f"Reconciler finished for booking {booking_id}: "
            f"{booking.status.value if booking is not None else 'gone'}"
        )
        return booking


class ReconcilerSupervisor:
    """Owns the per-booking reconciliation tasks of this process"""

    def __init__(self, reconciler: PaymentReconciler):
        self.reconciler = reconciler
        self._tasks: Dict[uuid.UUID, asyncio.Task] = {}
        self._wakeups: Dict[uuid.UUID, asyncio.Event] = {}

    def start(self, booking_id: uuid.UUID) -> asyncio.Task:
        """Start reconciling a booking; a running task is reused"""
        task = self._tasks.get(booking_id)
        if task is not None and not task.done():
            return task
        wakeup = self._wakeups[booking_id] = asyncio.Event()
        task = asyncio.create_task(
            self.reconciler.run(booking_id, wakeup),
            name=f"reconcile-{booking_id}",
        )
        self._tasks[booking_id] = task
        task.add_done_callback(lambda t, bid=booking_id: self._finished(bid, t))
        return task

    def _finished(self, booking_id: uuid.UUID, task: asyncio.Task) -> None:
        if self._tasks.get(booking_id) is task:
            self._tasks.pop(booking_id, None)
            self._wakeups.pop(booking_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Reconciler task for booking {booking_id} failed: {task.exception()!r}")

    def is_running(self, booking_id: uuid.UUID) -> bool:
        task = self._tasks.get(booking_id)
        return task is not None and not task.done()

    def nudge(self, booking_id: uuid.UUID) -> bool:
        """Poll now instead of at the next tick. Starts a task if none runs."""
        wakeup = self._wakeups.get(booking_id)
        if wakeup is not None and self.is_running(booking_id):
            wakeup.set()
            return True
        self.start(booking_id)
        return False

    async def cancel(self, booking_id: uuid.UUID) -> None:
        """Stop reconciling a booking that was settled by another path"""
        task = self._tasks.pop(booking_id, None)
        self._wakeups.pop(booking_id, None)
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info(f"Reconciler for booking {booking_id} cancelled")

    async def stop_all(self) -> None:
        for booking_id in list(self._tasks):
            await self.cancel(booking_id)

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())
