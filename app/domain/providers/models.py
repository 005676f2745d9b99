"""
Providers Domain Models

Doctors and their recurring weekly schedule. Both tables are maintained by
the admin service; the booking flow only reads them.
"""

from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey,
    Integer, Time, Text, Enum, Index, Uuid, text
)
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.infrastructure.database import Base
import uuid
import enum


class DayOfWeek(str, enum.Enum):
    """Day of week, indexed like date.weekday()"""
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def from_date(cls, value) -> "DayOfWeek":
        return list(cls)[value.weekday()]


class Provider(Base):
    """A doctor that can be booked"""
    __tablename__ = "providers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    specialization = Column(String(100), nullable=False)
    practice_address = Column(Text)
    base_hourly_rate = Column(Integer, nullable=False)
    is_available = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    schedules = relationship(
        "ScheduleSlot",
        back_populates="provider",
        lazy="selectin",
        order_by="ScheduleSlot.time_slot",
    )


class ScheduleSlot(Base):
    """One recurring (day, time, duration) availability unit"""
    __tablename__ = "schedule_slots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(Uuid, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)

    day_of_week = Column(Enum(DayOfWeek), nullable=False)
    time_slot = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    provider = relationship("Provider", back_populates="schedules")

    __table_args__ = (
        Index(
            "uq_schedule_slots_active_time",
            "provider_id", "day_of_week", "time_slot",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )
