"""Patient storage interface and implementations."""

import asyncio
from dataclasses import replace
from typing import Any, Protocol

from clinic_queue.errors import DuplicatePhoneError
from clinic_queue.models.patient import Patient


class PatientRepository(Protocol):
    """Interface for patient persistence.

    Implementations must enforce phone uniqueness on insert and update, the
    way a unique index would, even though the registry checks first.
    """

    async def get(self, patient_id: str) -> Patient | None:
        """Get a patient by id.

        Args:
            patient_id: The patient's unique identifier

        Returns:
            The patient, or None if it does not exist
        """
        ...

    async def find_by_phone(self, phone: str, exclude_id: str | None = None) -> Patient | None:
        """Find the patient holding a phone number.

        Args:
            phone: Phone number to look up
            exclude_id: Patient to ignore, used when validating an edit to itself

        Returns:
            The other patient holding the number, or None
        """
        ...

    async def insert(self, patient: Patient) -> Patient:
        """Store a new patient. Raises DuplicatePhoneError on a phone collision."""
        ...

    async def update(self, patient_id: str, **fields: Any) -> Patient | None:
        """Apply a partial update. Returns None if the patient does not exist."""
        ...

    async def delete(self, patient_id: str) -> bool:
        """Delete a patient. Returns False if it did not exist."""
        ...

    async def list_patients(self) -> list[Patient]:
        """Return every patient, in no particular order."""
        ...


class InMemoryPatientRepository:
    """In-memory patient storage.

    Every call yields to the event loop once before touching state, so
    concurrent callers interleave the way they would against a database.
    """

    def __init__(self):
        self.patients: dict[str, Patient] = {}

    async def get(self, patient_id: str) -> Patient | None:
        await asyncio.sleep(0)
        patient = self.patients.get(patient_id)
        return replace(patient) if patient else None

    async def find_by_phone(self, phone: str, exclude_id: str | None = None) -> Patient | None:
        await asyncio.sleep(0)
        patient = self._holder_of(phone, exclude_id)
        return replace(patient) if patient else None

    async def insert(self, patient: Patient) -> Patient:
        await asyncio.sleep(0)
        if self._holder_of(patient.phone):
            raise DuplicatePhoneError(patient.phone)
        self.patients[patient.id] = replace(patient)
        return replace(patient)

    async def update(self, patient_id: str, **fields: Any) -> Patient | None:
        await asyncio.sleep(0)
        patient = self.patients.get(patient_id)
        if patient is None:
            return None
        phone = fields.get("phone")
        if phone is not None and self._holder_of(phone, exclude_id=patient_id):
            raise DuplicatePhoneError(phone)
        updated = replace(patient, **fields)
        self.patients[patient_id] = updated
        return replace(updated)

    async def delete(self, patient_id: str) -> bool:
        await asyncio.sleep(0)
        return self.patients.pop(patient_id, None) is not None

    async def list_patients(self) -> list[Patient]:
        await asyncio.sleep(0)
        return [replace(patient) for patient in self.patients.values()]

    def _holder_of(self, phone: str, exclude_id: str | None = None) -> Patient | None:
        for patient in self.patients.values():
            if patient.phone == phone and patient.id != exclude_id:
                return patient
        return None
