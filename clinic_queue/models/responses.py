"""API response models."""

from datetime import date, datetime

from pydantic import BaseModel

from clinic_queue.models.patient import Patient, PatientSummary, PatientWithStats, RegistryStats
from clinic_queue.models.visit import EnrichedVisit, QueueStats, VisitStatus


class PatientSummaryOut(BaseModel):
    """Live patient join attached to a visit."""

    id: str
    name: str
    phone: str
    email: str | None = None

    @classmethod
    def from_summary(cls, summary: PatientSummary) -> "PatientSummaryOut":
        return cls(id=summary.id, name=summary.name, phone=summary.phone, email=summary.email)


class VisitOut(BaseModel):
    """A visit with its snapshot fields and, when resolvable, its live patient."""

    id: str
    queue_number: int
    patient_id: str
    patient_name: str
    patient_phone: str
    status: VisitStatus
    reason: str | None = None
    created_at: datetime
    updated_at: datetime
    patient: PatientSummaryOut | None = None

    @classmethod
    def from_entry(cls, entry: EnrichedVisit) -> "VisitOut":
        visit = entry.visit
        return cls(
            id=visit.id,
            queue_number=visit.queue_number,
            patient_id=visit.patient_id,
            patient_name=visit.patient_name,
            patient_phone=visit.patient_phone,
            status=visit.status,
            reason=visit.reason,
            created_at=visit.created_at,
            updated_at=visit.updated_at,
            patient=PatientSummaryOut.from_summary(entry.patient) if entry.patient else None,
        )


class QueueStatsOut(BaseModel):
    total: int
    waiting: int
    in_room: int
    finished: int

    @classmethod
    def from_stats(cls, stats: QueueStats) -> "QueueStatsOut":
        return cls(**stats.as_dict())


class VisitResponse(BaseModel):
    visit: VisitOut


class VisitListResponse(BaseModel):
    """Response model for the day board."""

    visits: list[VisitOut]
    total: int
    stats: QueueStatsOut


class PatientOut(BaseModel):
    id: str
    name: str
    phone: str
    email: str | None = None
    birth_date: date | None = None
    gender: str | None = None
    address: str | None = None
    created_at: datetime
    updated_at: datetime
    visit_count: int | None = None
    last_visit_date: datetime | None = None

    @classmethod
    def from_patient(cls, patient: Patient) -> "PatientOut":
        return cls(
            id=patient.id,
            name=patient.name,
            phone=patient.phone,
            email=patient.email,
            birth_date=patient.birth_date,
            gender=patient.gender,
            address=patient.address,
            created_at=patient.created_at,
            updated_at=patient.updated_at,
        )

    @classmethod
    def from_stats(cls, item: PatientWithStats) -> "PatientOut":
        out = cls.from_patient(item.patient)
        out.visit_count = item.visit_count
        out.last_visit_date = item.last_visit_date
        return out


class PatientResponse(BaseModel):
    patient: PatientOut


class RegistryStatsOut(BaseModel):
    total: int
    new_today: int
    with_visits: int

    @classmethod
    def from_stats(cls, stats: RegistryStats) -> "RegistryStatsOut":
        return cls(total=stats.total, new_today=stats.new_today, with_visits=stats.with_visits)


class PatientListResponse(BaseModel):
    """Response model for the patient list."""

    patients: list[PatientOut]
    total: int
    stats: RegistryStatsOut


class SuccessResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
