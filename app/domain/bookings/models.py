"""
Bookings Domain Models

A Booking is a concrete reservation of a provider's schedule slot on one
calendar date. Status changes go through BookingLifecycle and are persisted
with a version check, never by assigning fields directly.
"""

from sqlalchemy import (
    Column, Date, Boolean, DateTime, ForeignKey,
    Integer, Time, Text, Enum, Index, CheckConstraint, Uuid, text
)
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.infrastructure.database import Base
from app.domain.providers.models import Provider  # noqa: F401
import uuid
import enum


class BookingStatus(str, enum.Enum):
    """Booking status enumeration"""
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    @property
    def label(self) -> str:
        return BOOKING_STATUS_LABELS[self]


class PaymentStatus(str, enum.Enum):
    """Payment status as seen from the booking"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def label(self) -> str:
        return PAYMENT_STATUS_LABELS[self]


class ConsultationType(str, enum.Enum):
    """Consultation modality"""
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"

    @property
    def label(self) -> str:
        return "Online" if self is ConsultationType.ONLINE else "Langsung ke Tempat"


TERMINAL_STATUSES = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
})

BOOKING_STATUS_LABELS = {
    BookingStatus.PENDING_PAYMENT: "Menunggu Pembayaran",
    BookingStatus.CONFIRMED: "Terkonfirmasi",
    BookingStatus.COMPLETED: "Selesai",
    BookingStatus.CANCELLED: "Dibatalkan",
    BookingStatus.EXPIRED: "Kedaluwarsa",
}

PAYMENT_STATUS_LABELS = {
    PaymentStatus.PENDING: "Menunggu",
    PaymentStatus.PAID: "Lunas",
    PaymentStatus.FAILED: "Gagal",
    PaymentStatus.EXPIRED: "Kedaluwarsa",
    PaymentStatus.CANCELLED: "Dibatalkan",
}


class Booking(Base):
    """Booking of a provider's slot on a specific date"""
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    provider_id = Column(Uuid, ForeignKey("providers.id"), nullable=False)
    schedule_slot_id = Column(Uuid, ForeignKey("schedule_slots.id"))

    # Scheduling
    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Consultation
    consultation_type = Column(Enum(ConsultationType), nullable=False)
    consultation_fee = Column(Integer, nullable=False)
    notes = Column(Text)

    # State
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING_PAYMENT)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    version = Column(Integer, nullable=False, default=1)
    cancellation_reason = Column(Text)

    # Slot hold: the booking occupies its (provider, date, time) while this is null
    released_at = Column(DateTime)
    expired_at = Column(DateTime)
    expiry_finalized = Column(Boolean, nullable=False, default=False)
    confirmed_at = Column(DateTime)

    # Audit
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    provider = relationship("Provider", lazy="joined")

    __table_args__ = (
        Index(
            "uq_bookings_slot_hold",
            "provider_id", "booking_date", "start_time",
            unique=True,
            postgresql_where=text("released_at IS NULL"),
            sqlite_where=text("released_at IS NULL"),
        ),
        CheckConstraint("start_time < end_time", name="check_booking_time_order"),
        CheckConstraint("consultation_fee >= 0", name="check_booking_fee"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def holds_slot(self) -> bool:
        return self.released_at is None


class BookingSlotHold(Base):
    """One slot start covered by a booking that still holds its time.

    A booking longer than its base slot writes one row per covered slot
    start. Rows are deleted when the booking releases its slot.
    """
    __tablename__ = "booking_slot_holds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = Column(Uuid, ForeignKey("providers.id"), nullable=False)
    booking_date = Column(Date, nullable=False)
    slot_time = Column(Time, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index(
            "uq_booking_slot_holds_time",
            "provider_id", "booking_date", "slot_time",
            unique=True,
        ),
    )
