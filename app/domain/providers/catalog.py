from collections import defaultdict
from typing import Dict, Iterable, List, Optional
import uuid

from app.domain.providers.models import DayOfWeek, ScheduleSlot


class ScheduleCatalog:
    """A provider's recurring weekly availability.

    Pure lookup over already-loaded ScheduleSlot rows. A day without slots
    yields an empty list.
    """

    def __init__(self, slots: Iterable[ScheduleSlot]):
        self._by_day: Dict[DayOfWeek, List[ScheduleSlot]] = defaultdict(list)
        self._by_id: Dict[uuid.UUID, ScheduleSlot] = {}
        for slot in slots:
            self._by_day[DayOfWeek(slot.day_of_week)].append(slot)
            self._by_id[slot.id] = slot
        for day_slots in self._by_day.values():
            day_slots.sort(key=lambda s: s.time_slot)

    @classmethod
    def from_provider(cls, provider) -> "ScheduleCatalog":
        return cls(provider.schedules or [])

    def slots_for(self, day_of_week: DayOfWeek) -> List[ScheduleSlot]:
        """Slots for a weekday ordered by time of day"""
        return list(self._by_day.get(DayOfWeek(day_of_week), []))

    def get(self, slot_id: uuid.UUID) -> Optional[ScheduleSlot]:
        return self._by_id.get(slot_id)

    def __len__(self) -> int:
        return len(self._by_id)
