"""
Payments Domain Models

A PaymentSession is one attempt to collect a booking's fee through the
payment gateway. Each attempt has its own order id.
"""

from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Integer, Enum, Index, Uuid, text
)
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.infrastructure.database import Base
from app.domain.bookings.models import Booking  # noqa: F401
import uuid
import enum


class PaymentSessionStatus(str, enum.Enum):
    """Lifecycle of one gateway attempt"""
    OPEN = "OPEN"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"


class PaymentSession(Base):
    """Gateway payment attempt for a pending booking"""
    __tablename__ = "payment_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(String(80), unique=True, nullable=False, index=True)
    attempt = Column(Integer, nullable=False, default=1)

    amount = Column(Integer, nullable=False)
    payment_type = Column(String(30), nullable=False, default="BOOKING")
    status = Column(Enum(PaymentSessionStatus), nullable=False, default=PaymentSessionStatus.OPEN)

    # Gateway handle
    snap_token = Column(String(255))
    snap_redirect_url = Column(String(500))
    expiry_at = Column(DateTime)

    paid_at = Column(DateTime)
    late_payment = Column(Boolean, nullable=False, default=False)
    failure_reason = Column(String(255))

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    booking = relationship("Booking", lazy="joined")

    __table_args__ = (
        # At most one open attempt per booking
        Index(
            "uq_payment_sessions_open",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status == PaymentSessionStatus.OPEN
