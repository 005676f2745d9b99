"""
Providers API Schemas

Pydantic models for doctor and schedule responses.
"""

from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime, time
import uuid
from app.domain.providers.models import DayOfWeek


class ScheduleSlotResponse(BaseModel):
    """Schema for a recurring schedule slot"""
    id: uuid.UUID
    provider_id: uuid.UUID
    day_of_week: DayOfWeek
    time_slot: time
    duration_minutes: int
    is_active: bool

    class Config:
        from_attributes = True


class ProviderResponse(BaseModel):
    """Schema for doctor response"""
    id: uuid.UUID
    name: str
    specialization: str
    practice_address: Optional[str] = None
    base_hourly_rate: int
    is_available: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProviderDetailResponse(ProviderResponse):
    """Doctor with the active weekly schedule"""
    schedules: List[ScheduleSlotResponse] = []
