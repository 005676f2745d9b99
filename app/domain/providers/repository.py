"""
Providers Repository Layer

Read-only data access for doctors and their schedules.
"""

from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import uuid

from app.domain.providers.models import DayOfWeek, Provider, ScheduleSlot


class ProviderRepository:
    """Repository for provider data access operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, provider_id: uuid.UUID) -> Optional[Provider]:
        """Get provider by ID with its schedule"""
        result = await self.db.execute(select(Provider).where(Provider.id == provider_id))
        return result.scalar_one_or_none()

    async def get_all(
        self,
        specialization: Optional[str] = None,
        is_available: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Provider]:
        """Get providers with filtering"""
        query = select(Provider)
        if specialization:
            query = query.where(Provider.specialization.ilike(f"%{specialization}%"))
        if is_available is not None:
            query = query.where(Provider.is_available == is_available)
        result = await self.db.execute(query.order_by(Provider.name).offset(skip).limit(limit))
        return list(result.scalars().all())


class ScheduleSlotRepository:
    """Repository for schedule slot data access operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, slot_id: uuid.UUID) -> Optional[ScheduleSlot]:
        result = await self.db.execute(select(ScheduleSlot).where(ScheduleSlot.id == slot_id))
        return result.scalar_one_or_none()

    async def get_by_provider(
        self,
        provider_id: uuid.UUID,
        day_of_week: Optional[DayOfWeek] = None,
        active_only: bool = True
    ) -> List[ScheduleSlot]:
        """Get a provider's slots, optionally for one weekday"""
        query = select(ScheduleSlot).where(ScheduleSlot.provider_id == provider_id)
        if day_of_week is not None:
            query = query.where(ScheduleSlot.day_of_week == day_of_week)
        if active_only:
            query = query.where(ScheduleSlot.is_active == True)  # noqa: E712
        result = await self.db.execute(query.order_by(ScheduleSlot.time_slot))
        return list(result.scalars().all())
