"""Queue ledger (visit storage) interface and implementations."""

import asyncio
from dataclasses import dataclass, replace
from datetime import date, datetime, tzinfo
from typing import Any, Protocol

from clinic_queue.errors import QueueNumberConflictError
from clinic_queue.models.visit import Visit


@dataclass
class VisitHistory:
    """Per-patient visit aggregate used by the patient list."""

    visit_count: int
    last_visit_date: datetime


class VisitRepository(Protocol):
    """Interface for visit persistence.

    Only the queue engine may insert visits. Implementations must reject a
    second visit with the same queue number on the same local day.
    """

    async def get(self, visit_id: str) -> Visit | None:
        """Get a visit by id, or None if it does not exist."""
        ...

    async def insert(self, visit: Visit) -> Visit:
        """Store a new visit.

        Raises:
            QueueNumberConflictError: The day already has this queue number
        """
        ...

    async def update(self, visit_id: str, **fields: Any) -> Visit | None:
        """Apply a partial update, touching only the given fields.

        Returns:
            The updated visit, or None if it does not exist
        """
        ...

    async def delete(self, visit_id: str) -> bool:
        """Delete a visit. Returns False if it did not exist."""
        ...

    async def delete_by_patient(self, patient_id: str) -> int:
        """Delete every visit of a patient and return how many were removed."""
        ...

    async def max_queue_number(self, start: datetime, end: datetime) -> int | None:
        """Return the highest queue number among visits created in [start, end)."""
        ...

    async def list_visits(self, start: datetime | None = None, end: datetime | None = None) -> list[Visit]:
        """Return visits created in [start, end); unbounded sides are open."""
        ...

    async def list_by_patient(self, patient_id: str) -> list[Visit]:
        """Return every visit of a patient."""
        ...

    async def history_by_patient(self) -> dict[str, VisitHistory]:
        """Return visit count and latest visit date keyed by patient id."""
        ...


class InMemoryVisitRepository:
    """In-memory visit storage.

    Keeps a (local day, queue number) index that plays the part of a unique
    constraint, so a racing writer gets a QueueNumberConflictError instead of
    a silent duplicate.
    """

    def __init__(self, tz: tzinfo | None = None):
        """Initialize storage.

        Args:
            tz: Timezone defining the local day of the uniqueness index
        """
        self.tz = tz
        self.visits: dict[str, Visit] = {}
        self._numbers: dict[tuple[date, int], str] = {}

    async def get(self, visit_id: str) -> Visit | None:
        await asyncio.sleep(0)
        visit = self.visits.get(visit_id)
        return replace(visit) if visit else None

    async def insert(self, visit: Visit) -> Visit:
        await asyncio.sleep(0)
        key = self._number_key(visit)
        if key in self._numbers:
            raise QueueNumberConflictError(visit.queue_number)
        self._numbers[key] = visit.id
        self.visits[visit.id] = replace(visit)
        return replace(visit)

    async def update(self, visit_id: str, **fields: Any) -> Visit | None:
        await asyncio.sleep(0)
        visit = self.visits.get(visit_id)
        if visit is None:
            return None
        updated = replace(visit, **fields)
        self.visits[visit_id] = updated
        return replace(updated)

    async def delete(self, visit_id: str) -> bool:
        await asyncio.sleep(0)
        return self._drop(visit_id)

    async def delete_by_patient(self, patient_id: str) -> int:
        await asyncio.sleep(0)
        doomed = [visit.id for visit in self.visits.values() if visit.patient_id == patient_id]
        for visit_id in doomed:
            self._drop(visit_id)
        return len(doomed)

    async def max_queue_number(self, start: datetime, end: datetime) -> int | None:
        await asyncio.sleep(0)
        numbers = [visit.queue_number for visit in self.visits.values() if start <= visit.created_at < end]
        return max(numbers, default=None)

    async def list_visits(self, start: datetime | None = None, end: datetime | None = None) -> list[Visit]:
        await asyncio.sleep(0)
        return [
            replace(visit)
            for visit in self.visits.values()
            if (start is None or visit.created_at >= start) and (end is None or visit.created_at < end)
        ]

    async def list_by_patient(self, patient_id: str) -> list[Visit]:
        await asyncio.sleep(0)
        return [replace(visit) for visit in self.visits.values() if visit.patient_id == patient_id]

    async def history_by_patient(self) -> dict[str, VisitHistory]:
        await asyncio.sleep(0)
        history: dict[str, VisitHistory] = {}
        for visit in self.visits.values():
            entry = history.get(visit.patient_id)
            if entry is None:
                history[visit.patient_id] = VisitHistory(visit_count=1, last_visit_date=visit.created_at)
                continue
            entry.visit_count += 1
            entry.last_visit_date = max(entry.last_visit_date, visit.created_at)
        return history

    def _number_key(self, visit: Visit) -> tuple[date, int]:
        return visit.created_at.astimezone(self.tz).date(), visit.queue_number

    def _drop(self, visit_id: str) -> bool:
        visit = self.visits.pop(visit_id, None)
        if visit is None:
            return False
        self._numbers.pop(self._number_key(visit), None)
        return True
