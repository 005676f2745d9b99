# Providers domain module
from app.domain.providers.models import (
    DayOfWeek,
    Provider,
    ScheduleSlot,
)
from app.domain.providers.catalog import ScheduleCatalog

__all__ = [
    "DayOfWeek",
    "Provider",
    "ScheduleSlot",
    "ScheduleCatalog",
]
