"""Test doubles and helpers shared by the test modules"""

import asyncio
from typing import Dict, List, Optional
from datetime import date, timedelta

from app.core.clock import utcnow
from app.core.exceptions import PaymentGatewayError
from app.domain.bookings.models import Booking
from app.infrastructure.payment_gateway import GatewayPaymentStatus, GatewaySession, PaymentGateway


class FakePaymentGateway(PaymentGateway):
    """In-memory gateway. Status defaults to PENDING until a test sets it."""

    def __init__(self, expiry: timedelta = timedelta(hours=24)):
        self.expiry = expiry
        self.default_status = GatewayPaymentStatus.PENDING
        self.statuses: Dict[str, GatewayPaymentStatus] = {}
        self.created: List[str] = []
        self.cancelled: List[str] = []
        self.status_calls = 0
        self.fail_create = 0
        self.fail_status = 0

    async def create_session(self, order_id: str, amount: int, expiry_hint: timedelta) -> GatewaySession:
        if self.fail_create:
            self.fail_create -= 1
            raise PaymentGatewayError("Gateway create_session failed after 3 attempts")
        self.created.append(order_id)
        return GatewaySession(
            order_id=order_id,
            handle=f"snap-{order_id}",
            redirect_url=f"https://pay.example.test/{order_id}",
            expiry_at=utcnow() + self.expiry,
        )

    async def get_status(self, order_id: str) -> GatewayPaymentStatus:
        self.status_calls += 1
        if self.fail_status:
            self.fail_status -= 1
            raise PaymentGatewayError("Gateway get_status timed out")
        return self.statuses.get(order_id, self.default_status)

    async def cancel_session(self, order_id: str) -> None:
        self.cancelled.append(order_id)


class FakeRedis:
    """The slice of redis.asyncio.Redis used by FlowStateStore"""

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.ttls: Dict[str, int] = {}

    async def setex(self, key, ttl, value):
        self.data[key] = value if isinstance(value, bytes) else str(value).encode("utf-8")
        self.ttls[key] = ttl
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed


def next_weekday(day_index: int, after: Optional[date] = None) -> date:
    """First date strictly after `after` falling on the given weekday"""
    after = after or date.today()
    days_ahead = (day_index - after.weekday()) % 7 or 7
    return after + timedelta(days=days_ahead)


async def load_booking(session_factory, booking_id) -> Booking:
    async with session_factory() as db:
        return await db.get(Booking, booking_id, populate_existing=True)


async def wait_for_booking(session_factory, booking_id, predicate, timeout: float = 5.0) -> Booking:
    """Poll the database until predicate(booking) holds or the timeout runs out"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        booking = await load_booking(session_factory, booking_id)
        if predicate(booking) or loop.time() >= deadline:
            return booking
        await asyncio.sleep(0.02)
