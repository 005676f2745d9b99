"""
Providers API Routes

Read-only endpoints for doctors and their weekly schedules.
"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional
import uuid

from app.infrastructure.database import get_db
from app.domain.providers.models import DayOfWeek
from app.domain.providers.service import ProviderService
from app.api.v1.providers.schemas import (
    ProviderResponse, ProviderDetailResponse, ScheduleSlotResponse
)

router = APIRouter()


@router.get("", response_model=List[ProviderResponse])
async def list_providers(
    specialization: Optional[str] = Query(None),
    is_available: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db=Depends(get_db)
):
    """List doctors"""
    service = ProviderService(db)
    return await service.list_providers(specialization, is_available, skip, limit)


@router.get("/{provider_id}", response_model=ProviderDetailResponse)
async def get_provider(
    provider_id: uuid.UUID,
    db=Depends(get_db)
):
    """Get a doctor with the active weekly schedule"""
    service = ProviderService(db)
    provider = await service.get_provider(provider_id)
    return ProviderDetailResponse(
        **ProviderResponse.model_validate(provider).model_dump(),
        schedules=[
            ScheduleSlotResponse.model_validate(slot)
            for slot in await service.get_schedules(provider_id)
        ],
    )


@router.get("/{provider_id}/schedules", response_model=List[ScheduleSlotResponse])
async def get_provider_schedules(
    provider_id: uuid.UUID,
    day: Optional[DayOfWeek] = Query(None, description="Only slots on this day"),
    db=Depends(get_db)
):
    """Get a doctor's active schedule slots ordered by time"""
    service = ProviderService(db)
    return await service.get_schedules(provider_id, day)
