"""Patient registry: canonical patient records and their lifecycle."""

from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime, tzinfo
from typing import Any

from cuid2 import cuid_wrapper
from pydantic import ValidationError

from clinic_queue.errors import DuplicatePhoneError, FieldValidationError, NotFoundError
from clinic_queue.models.patient import Patient, PatientCreate, PatientUpdate, PatientWithStats, RegistryStats
from clinic_queue.services.ledger import VisitRepository
from clinic_queue.services.patients import PatientRepository
from clinic_queue.utils.clock import Clock, local_clock
from clinic_queue.utils.locks import KeyedLock
from clinic_queue.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"]) or "input"
        parts.append(f"{field}: {item['msg']}")
    return "; ".join(parts)


class PatientRegistry:
    """Source of truth for patient identity and contact details.

    Holds one lock per patient id. The queue engine takes the same lock
    while enqueueing, so a patient can never be deleted between the
    existence check and the visit insert.
    """

    def __init__(
        self,
        patients: PatientRepository,
        visits: VisitRepository,
        clock: Clock | None = None,
        tz: tzinfo | None = None,
    ):
        self.patients = patients
        self.visits = visits
        self.tz = tz
        self.clock = clock or local_clock(tz)
        self._locks = KeyedLock()

    def patient_lock(self, patient_id: str) -> AbstractAsyncContextManager[None]:
        """Critical section for every write that depends on a patient."""
        return self._locks.hold(patient_id)

    async def register(
        self,
        name: str,
        phone: str,
        email: str | None = None,
        birth_date: Any = None,
        gender: str | None = None,
        address: str | None = None,
    ) -> Patient:
        """Register a new patient.

        Raises:
            FieldValidationError: Name or phone missing, or a malformed field
            DuplicatePhoneError: Another patient already uses the phone
        """
        try:
            data = PatientCreate(
                name=name,
                phone=phone,
                email=email,
                birth_date=birth_date,
                gender=gender,
                address=address,
            )
        except ValidationError as e:
            raise FieldValidationError(_validation_message(e)) from e
        self._check_birth_date(data.birth_date)

        if await self.patients.find_by_phone(data.phone):
            logger.warning(f"Rejected registration, phone already in use: {data.phone}")
            raise DuplicatePhoneError(data.phone)

        now = self.clock()
        patient = Patient(id=cuid(), created_at=now, updated_at=now, **data.model_dump())
        patient = await self.patients.insert(patient)
        logger.info(f"Registered patient {patient.id}")
        return patient

    async def update(self, patient_id: str, changes: Mapping[str, Any] | PatientUpdate) -> Patient:
        """Apply a partial edit to a patient.

        Raises:
            NotFoundError: The patient does not exist
            DuplicatePhoneError: The new phone belongs to a different patient
        """
        async with self.patient_lock(patient_id):
            return await self.apply_update(patient_id, changes)

    async def apply_update(self, patient_id: str, changes: Mapping[str, Any] | PatientUpdate) -> Patient:
        """Same as update(); the caller must already hold patient_lock(patient_id)."""
        if isinstance(changes, PatientUpdate):
            fields = changes.changes()
        else:
            try:
                fields = PatientUpdate(**changes).changes()
            except ValidationError as e:
                raise FieldValidationError(_validation_message(e)) from e
        self._check_birth_date(fields.get("birth_date"))

        current = await self.patients.get(patient_id)
        if current is None:
            raise NotFoundError("Patient", patient_id)

        phone = fields.get("phone")
        if phone is not None and await self.patients.find_by_phone(phone, exclude_id=patient_id):
            logger.warning(f"Rejected phone change for patient {patient_id}, number in use")
            raise DuplicatePhoneError(phone)

        if not fields:
            return current

        patient = await self.patients.update(patient_id, updated_at=self.clock(), **fields)
        if patient is None:
            raise NotFoundError("Patient", patient_id)

        logger.info(f"Updated patient {patient_id}: {sorted(fields)}")
        return patient

    async def remove(self, patient_id: str) -> int:
        """Delete a patient and every visit that references it.

        Returns:
            Number of visits removed along with the patient

        Raises:
            NotFoundError: The patient does not exist
        """
        async with self.patient_lock(patient_id):
            if await self.patients.get(patient_id) is None:
                raise NotFoundError("Patient", patient_id)

            removed_visits = await self.visits.delete_by_patient(patient_id)
            if not await self.patients.delete(patient_id):
                raise NotFoundError("Patient", patient_id)

        logger.info(f"Removed patient {patient_id} and {removed_visits} visits")
        return removed_visits

    async def get(self, patient_id: str) -> Patient:
        """Get a patient, raising NotFoundError if it does not exist."""
        patient = await self.patients.get(patient_id)
        if patient is None:
            raise NotFoundError("Patient", patient_id)
        return patient

    async def find(self, patient_id: str) -> Patient | None:
        return await self.patients.get(patient_id)

    async def list_patients(
        self,
        with_stats: bool = False,
        search: str | None = None,
        only_with_visits: bool = False,
        only_new_today: bool = False,
    ) -> list[Patient] | list[PatientWithStats]:
        """List patients, newest registration first.

        Args:
            with_stats: Annotate each patient with visit count and last visit date
            search: Case-insensitive match on name or email, substring on phone
            only_with_visits: Keep patients that have at least one visit
            only_new_today: Keep patients registered today

        Returns:
            Patients, or PatientWithStats entries when with_stats is set
        """
        patients = sorted(await self.patients.list_patients(), key=lambda p: p.created_at, reverse=True)

        if search:
            patients = [p for p in patients if self._matches(p, search)]

        if only_new_today:
            today = self._local_date(self.clock())
            patients = [p for p in patients if self._local_date(p.created_at) == today]

        if not with_stats and not only_with_visits:
            return patients

        history = await self.visits.history_by_patient()
        annotated = []
        for patient in patients:
            entry = history.get(patient.id)
            annotated.append(
                PatientWithStats(
                    patient=patient,
                    visit_count=entry.visit_count if entry else 0,
                    last_visit_date=entry.last_visit_date if entry else None,
                )
            )

        if only_with_visits:
            annotated = [item for item in annotated if item.visit_count > 0]

        if with_stats:
            return annotated
        return [item.patient for item in annotated]

    async def stats(self) -> RegistryStats:
        """Count all patients, those registered today, and those with visits."""
        patients = await self.patients.list_patients()
        history = await self.visits.history_by_patient()
        today = self._local_date(self.clock())

        return RegistryStats(
            total=len(patients),
            new_today=sum(1 for p in patients if self._local_date(p.created_at) == today),
            with_visits=sum(1 for p in patients if p.id in history),
        )

    def _local_date(self, moment: datetime) -> date:
        return moment.astimezone(self.tz).date()

    def _check_birth_date(self, birth_date: date | None) -> None:
        if birth_date is not None and birth_date >= self._local_date(self.clock()):
            raise FieldValidationError("birth_date: Birth date must be in the past")

    @staticmethod
    def _matches(patient: Patient, search: str) -> bool:
        term = search.strip().lower()
        if not term:
            return True
        return (
            term in patient.name.lower()
            or term in patient.phone
            or (patient.email is not None and term in patient.email.lower())
        )
