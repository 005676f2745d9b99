from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from app.core.exceptions import NotFoundError
from app.domain.providers.catalog import ScheduleCatalog
from app.domain.providers.models import DayOfWeek, Provider, ScheduleSlot
from app.domain.providers.repository import ProviderRepository, ScheduleSlotRepository


class ProviderService:
    """Read side for doctors and schedules"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.provider_repo = ProviderRepository(db)
        self.slot_repo = ScheduleSlotRepository(db)

    async def get_provider(self, provider_id: uuid.UUID) -> Provider:
        provider = await self.provider_repo.get_by_id(provider_id)
        if not provider:
            raise NotFoundError("Doctor not found", details={"provider_id": str(provider_id)})
        return provider

    async def list_providers(
        self,
        specialization: Optional[str] = None,
        is_available: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Provider]:
        return await self.provider_repo.get_all(specialization, is_available, skip, limit)

    async def get_schedules(
        self,
        provider_id: uuid.UUID,
        day_of_week: Optional[DayOfWeek] = None
    ) -> List[ScheduleSlot]:
        await self.get_provider(provider_id)
        return await self.slot_repo.get_by_provider(provider_id, day_of_week)

    async def get_catalog(self, provider_id: uuid.UUID) -> ScheduleCatalog:
        provider = await self.get_provider(provider_id)
        return ScheduleCatalog.from_provider(provider)

    async def get_slot(self, provider_id: uuid.UUID, slot_id: uuid.UUID) -> ScheduleSlot:
        slot = await self.slot_repo.get_by_id(slot_id)
        if not slot or slot.provider_id != provider_id:
            raise NotFoundError("Schedule not found", details={"schedule_id": str(slot_id)})
        return slot
