"""Visit (queue entry) data models and the visit state machine."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from clinic_queue.models.patient import PatientSummary


class VisitStatus(StrEnum):
    """Lifecycle of a visit."""

    WAITING = "WAITING"
    IN_ROOM = "IN_ROOM"
    FINISHED = "FINISHED"


# Board ordering policy. Kept explicit so reordering the enum never changes it.
STATUS_SORT_ORDER: dict[VisitStatus, int] = {
    VisitStatus.WAITING: 0,
    VisitStatus.IN_ROOM: 1,
    VisitStatus.FINISHED: 2,
}

# The only sanctioned transitions. FINISHED is terminal.
NEXT_STATUS: dict[VisitStatus, VisitStatus | None] = {
    VisitStatus.WAITING: VisitStatus.IN_ROOM,
    VisitStatus.IN_ROOM: VisitStatus.FINISHED,
    VisitStatus.FINISHED: None,
}


@dataclass
class Visit:
    """One patient's entry in a day's queue, owned by the ledger.

    ``patient_name`` and ``patient_phone`` are a snapshot taken at enqueue
    time and may drift from the patient record until explicitly re-synced.
    """

    id: str
    queue_number: int
    patient_id: str
    patient_name: str
    patient_phone: str
    status: VisitStatus
    created_at: datetime
    updated_at: datetime
    reason: str | None = None

    @property
    def next_status(self) -> VisitStatus | None:
        return NEXT_STATUS[self.status]


@dataclass
class EnrichedVisit:
    """A visit together with its live patient join.

    The live join wins when it resolves; the snapshot is the fallback.
    """

    visit: Visit
    patient: PatientSummary | None = None

    @property
    def display_name(self) -> str:
        return self.patient.name if self.patient else self.visit.patient_name

    @property
    def display_phone(self) -> str:
        return self.patient.phone if self.patient else self.visit.patient_phone

    @property
    def display_email(self) -> str | None:
        return self.patient.email if self.patient else None

    def sort_key(self) -> tuple[int, int]:
        return STATUS_SORT_ORDER[self.visit.status], self.visit.queue_number


@dataclass
class QueueStats:
    """Per-day aggregate counts."""

    total: int = 0
    waiting: int = 0
    in_room: int = 0
    finished: int = 0

    @classmethod
    def from_visits(cls, visits: Iterable[Visit]) -> "QueueStats":
        stats = cls()
        for visit in visits:
            stats.total += 1
            if visit.status == VisitStatus.WAITING:
                stats.waiting += 1
            elif visit.status == VisitStatus.IN_ROOM:
                stats.in_room += 1
            else:
                stats.finished += 1
        return stats

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "waiting": self.waiting,
            "in_room": self.in_room,
            "finished": self.finished,
        }


class VisitCreate(BaseModel):
    """Input for enqueueing a patient."""

    patient_id: str = Field(..., min_length=1, max_length=64)
    reason: str | None = Field(default=None, max_length=1000)

    @field_validator("patient_id")
    @classmethod
    def validate_patient_id(cls, v: str) -> str:
        if v.isspace():
            raise ValueError("Patient id is required")
        return v.strip()


class VisitAdvance(BaseModel):
    """Input for moving a visit to its next status."""

    reason: str | None = Field(default=None, max_length=1000)


class VisitUpdate(BaseModel):
    """Combined visit edit accepted by the API layer."""

    status: VisitStatus | None = None
    reason: str | None = Field(default=None, max_length=1000)
    patient_name: str | None = Field(default=None, max_length=200)
    patient_phone: str | None = Field(default=None, max_length=40)
    patient_email: str | None = Field(default=None, max_length=254)

    @field_validator("patient_name", "patient_phone")
    @classmethod
    def validate_contact(cls, v: str | None) -> str:
        if v is None or not v.strip():
            raise ValueError("Field cannot be empty or whitespace only")
        return v.strip()
