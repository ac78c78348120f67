"""Queue engine: sequence assignment, visit transitions and day-scoped queries."""

from collections.abc import Mapping
from datetime import date, datetime, tzinfo
from typing import Any

from cuid2 import cuid_wrapper

from clinic_queue.config import QueueConfig
from clinic_queue.errors import (
    FieldValidationError,
    InvalidTransitionError,
    NotFoundError,
    PatientNotFoundError,
    QueueNumberConflictError,
)
from clinic_queue.models.patient import Patient, PatientSummary, PatientUpdate
from clinic_queue.models.visit import EnrichedVisit, QueueStats, Visit, VisitStatus
from clinic_queue.services.ledger import InMemoryVisitRepository, VisitRepository
from clinic_queue.services.patients import InMemoryPatientRepository
from clinic_queue.services.registry import PatientRegistry
from clinic_queue.utils.clock import Clock, day_bounds, local_clock, parse_day
from clinic_queue.utils.locks import KeyedLock
from clinic_queue.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


def _clean_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    reason = reason.strip()
    return reason or None


class QueueEngine:
    """Orchestrates the daily queue on top of the registry and the ledger.

    Concurrency:
    - enqueue holds the patient's lock, then the day's lock, around the
      read-max/insert sequence; ledger conflicts are retried.
    - visit edits hold the visit's lock and re-read the visit before
      writing, so transitions never act on a stale status.
    - ledger writes are field-wise, so a status change and a snapshot
      sync on the same visit never overwrite each other.
    Lock order is patient before day and visit before patient.
    """

    def __init__(
        self,
        registry: PatientRegistry,
        visits: VisitRepository,
        config: QueueConfig | None = None,
        clock: Clock | None = None,
        tz: tzinfo | None = None,
    ):
        """Initialize the engine.

        Args:
            registry: Patient registry (also provides per-patient locks)
            visits: Visit ledger
            config: Engine configuration (defaults to QueueConfig())
            clock: Source of aware "now" datetimes
            tz: Clinic timezone, overriding config.timezone
        """
        self.registry = registry
        self.visits = visits
        self.config = config or QueueConfig()
        self.tz = tz if tz is not None else self.config.get_tzinfo()
        self.clock = clock or local_clock(self.tz)
        self._day_locks = KeyedLock()
        self._visit_locks = KeyedLock()

    # Time helpers

    def localize(self, moment: datetime) -> datetime:
        """Express a timestamp in the clinic's local time."""
        return moment.astimezone(self.tz)

    def today(self) -> date:
        return self.localize(self.clock()).date()

    # Writes

    async def enqueue(self, patient_id: str, reason: str | None = None) -> EnrichedVisit:
        """Add a patient to today's queue with the next queue number.

        Args:
            patient_id: Patient to enqueue
            reason: Optional free-text reason for the visit

        Returns:
            The new WAITING visit joined with its patient

        Raises:
            FieldValidationError: patient_id is blank
            PatientNotFoundError: No such patient
            QueueNumberConflictError: The ledger kept rejecting the number
        """
        if not patient_id or not patient_id.strip():
            raise FieldValidationError("Patient id is required")

        async with self.registry.patient_lock(patient_id):
            patient = await self.registry.find(patient_id)
            if patient is None:
                logger.warning(f"Cannot enqueue unknown patient {patient_id}")
                raise PatientNotFoundError(patient_id)

            conflict: QueueNumberConflictError | None = None
            for attempt in range(1, self.config.enqueue_max_attempts + 1):
                try:
                    visit = await self._insert_next(patient, _clean_reason(reason))
                except QueueNumberConflictError as e:
                    conflict = e
                    logger.warning(
                        f"Queue number {e.queue_number} taken on attempt "
                        f"{attempt}/{self.config.enqueue_max_attempts}, retrying"
                    )
                    continue

                logger.info(f"Enqueued patient {patient.id} as #{visit.queue_number} (visit {visit.id})")
                return EnrichedVisit(visit=visit, patient=patient.summary())

        logger.error(f"Giving up enqueue for patient {patient_id} after repeated queue number conflicts")
        raise conflict

    async def _insert_next(self, patient: Patient, reason: str | None) -> Visit:
        now = self.clock()
        start, end = day_bounds(self.localize(now).date(), self.tz)

        async with self._day_locks.hold(start.date()):
            last_number = await self.visits.max_queue_number(start, end)
            visit = Visit(
                id=cuid(),
                queue_number=(last_number or 0) + 1,
                patient_id=patient.id,
                patient_name=patient.name,
                patient_phone=patient.phone,
                status=VisitStatus.WAITING,
                created_at=now,
                updated_at=now,
                reason=reason,
            )
            return await self.visits.insert(visit)

    async def advance(self, visit_id: str, reason: str | None = None) -> EnrichedVisit:
        """Move a visit to its unique successor status.

        A FINISHED visit stays FINISHED; if a reason is given it is still
        written, otherwise the call fails.

        Raises:
            NotFoundError: No such visit
            InvalidTransitionError: The visit is FINISHED and there is nothing to write
        """
        async with self._visit_locks.hold(visit_id):
            visit = await self._require_visit(visit_id)
            changes: dict[str, Any] = {}
            if reason is not None:
                changes["reason"] = _clean_reason(reason)

            target = visit.next_status
            if target is None:
                if not changes:
                    logger.warning(f"Visit {visit_id} is already {visit.status}")
                    raise InvalidTransitionError(visit.status)
            else:
                changes["status"] = target

            visit = await self._write(visit_id, changes)

        if "status" in changes:
            logger.info(f"Visit #{visit.queue_number} ({visit_id}) moved to {visit.status}")
        return await self._enrich(visit)

    async def transition(
        self, visit_id: str, status: VisitStatus | str, reason: str | None = None
    ) -> EnrichedVisit:
        """Move a visit to an explicitly requested status.

        Only the sanctioned successor of the current status is accepted.

        Raises:
            FieldValidationError: Unknown status value
            NotFoundError: No such visit
            InvalidTransitionError: The requested status is not the successor
        """
        return await self.update_visit(visit_id, status=status, reason=reason)

    async def update_reason(self, visit_id: str, reason: str | None) -> EnrichedVisit:
        """Replace (or clear, with None or blank) a visit's reason."""
        async with self._visit_locks.hold(visit_id):
            visit = await self._write(visit_id, {"reason": _clean_reason(reason)})
        return await self._enrich(visit)

    async def sync_patient_snapshot(
        self,
        visit_id: str,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
    ) -> EnrichedVisit:
        """Edit the visit's patient and mirror name/phone into the visit snapshot.

        The patient record itself is updated; email is patient-only since a
        visit has no email field and a blank email clears it. When the
        visit's patient no longer resolves, nothing is changed.

        Raises:
            NotFoundError: No such visit
            DuplicatePhoneError: The new phone belongs to a different patient
            FieldValidationError: Blank name or phone
        """
        return await self.update_visit(visit_id, patient_name=name, patient_phone=phone, patient_email=email)

    async def update_visit(
        self,
        visit_id: str,
        status: VisitStatus | str | None = None,
        reason: str | None = None,
        patient_name: str | None = None,
        patient_phone: str | None = None,
        patient_email: str | None = None,
    ) -> EnrichedVisit:
        """Combined visit edit: patient fields, status and reason.

        Fields left as None are not touched; a blank reason clears it. The
        requested status is checked before anything is written, so a
        rejected transition leaves the patient and the visit unchanged.

        Raises:
            FieldValidationError: Unknown status value, blank name or phone
            NotFoundError: No such visit
            InvalidTransitionError: The requested status is not the successor
            DuplicatePhoneError: The new phone belongs to a different patient
        """
        target = self._parse_status(status) if status is not None else None
        contact = {
            field: value
            for field, value in (("name", patient_name), ("phone", patient_phone), ("email", patient_email))
            if value is not None
        }

        async with self._visit_locks.hold(visit_id):
            visit = await self._require_visit(visit_id)
            if target is not None and visit.next_status != target:
                logger.warning(f"Rejected transition of visit {visit_id} from {visit.status} to {target}")
                raise InvalidTransitionError(visit.status, target)

            changes: dict[str, Any] = {}
            if target is not None:
                changes["status"] = target
            if reason is not None:
                changes["reason"] = _clean_reason(reason)

            patient: Patient | None = None
            if contact:
                async with self.registry.patient_lock(visit.patient_id):
                    if await self.registry.find(visit.patient_id) is None:
                        logger.warning(f"Visit {visit_id} has no live patient, snapshot left as is")
                    else:
                        patient = await self.registry.apply_update(visit.patient_id, contact)
                        if "name" in contact:
                            changes["patient_name"] = patient.name
                        if "phone" in contact:
                            changes["patient_phone"] = patient.phone
                    if changes:
                        visit = await self._write(visit_id, changes)
            elif changes:
                visit = await self._write(visit_id, changes)

        if target is not None:
            logger.info(f"Visit #{visit.queue_number} ({visit_id}) moved to {visit.status}")
        if patient is not None:
            return EnrichedVisit(visit=visit, patient=patient.summary())
        return await self._enrich(visit)

    async def update_patient(
        self,
        patient_id: str,
        changes: Mapping[str, Any] | PatientUpdate,
        propagate: bool = False,
    ) -> Patient:
        """Edit a patient and optionally re-sync its visits' snapshots.

        Without propagate, existing visits keep their old name/phone snapshot.

        Raises:
            NotFoundError: No such patient
            DuplicatePhoneError: The new phone belongs to a different patient
        """
        async with self.registry.patient_lock(patient_id):
            patient = await self.registry.apply_update(patient_id, changes)
            if not propagate:
                return patient

            synced = 0
            now = self.clock()
            for visit in await self.visits.list_by_patient(patient_id):
                snapshot: dict[str, Any] = {}
                if visit.patient_name != patient.name:
                    snapshot["patient_name"] = patient.name
                if visit.patient_phone != patient.phone:
                    snapshot["patient_phone"] = patient.phone
                if snapshot:
                    await self.visits.update(visit.id, updated_at=now, **snapshot)
                    synced += 1

        logger.info(f"Propagated patient {patient_id} contact details to {synced} visits")
        return patient

    async def remove(self, visit_id: str) -> None:
        """Delete a visit.

        Raises:
            NotFoundError: No such visit
        """
        async with self._visit_locks.hold(visit_id):
            if not await self.visits.delete(visit_id):
                raise NotFoundError("Visit", visit_id)
        logger.info(f"Removed visit {visit_id}")

    # Reads

    async def get(self, visit_id: str) -> EnrichedVisit:
        """Get one visit joined with its patient."""
        return await self._enrich(await self._require_visit(visit_id))

    async def list_for_day(self, day: date | str | None = None) -> list[EnrichedVisit]:
        """List visits, all of them when day is None, otherwise that local day's.

        Ordered by STATUS_SORT_ORDER, then queue number.
        """
        visits, _ = await self.board(day)
        return visits

    async def stats_for_day(self, day: date | str | None = None) -> QueueStats:
        """Count visits per status over the same set list_for_day returns."""
        return QueueStats.from_visits(await self._visits_for(day))

    async def board(self, day: date | str | None = None) -> tuple[list[EnrichedVisit], QueueStats]:
        """Return the ordered visits and their stats from one read of the ledger."""
        visits = await self._visits_for(day)
        entries = await self._enrich_many(visits)
        entries.sort(key=EnrichedVisit.sort_key)
        return entries, QueueStats.from_visits(visits)

    # Internals

    async def _visits_for(self, day: date | str | None) -> list[Visit]:
        if day is None:
            return await self.visits.list_visits()
        start, end = day_bounds(parse_day(day), self.tz)
        return await self.visits.list_visits(start, end)

    @staticmethod
    def _parse_status(status: VisitStatus | str) -> VisitStatus:
        try:
            return VisitStatus(status)
        except ValueError as e:
            raise FieldValidationError(f"Unknown visit status {status!r}") from e

    async def _require_visit(self, visit_id: str) -> Visit:
        visit = await self.visits.get(visit_id)
        if visit is None:
            raise NotFoundError("Visit", visit_id)
        return visit

    async def _write(self, visit_id: str, changes: Mapping[str, Any]) -> Visit:
        visit = await self.visits.update(visit_id, updated_at=self.clock(), **changes)
        if visit is None:
            raise NotFoundError("Visit", visit_id)
        return visit

    async def _enrich(self, visit: Visit) -> EnrichedVisit:
        patient = await self.registry.find(visit.patient_id)
        return EnrichedVisit(visit=visit, patient=patient.summary() if patient else None)

    async def _enrich_many(self, visits: list[Visit]) -> list[EnrichedVisit]:
        summaries: dict[str, PatientSummary | None] = {}
        for patient_id in {visit.patient_id for visit in visits}:
            patient = await self.registry.find(patient_id)
            summaries[patient_id] = patient.summary() if patient else None
        return [EnrichedVisit(visit=visit, patient=summaries[visit.patient_id]) for visit in visits]


def build_in_memory_engine(
    config: QueueConfig | None = None,
    clock: Clock | None = None,
    tz: tzinfo | None = None,
) -> QueueEngine:
    """Wire an engine to fresh in-memory registry and ledger storage."""
    config = config or QueueConfig()
    tz = tz if tz is not None else config.get_tzinfo()
    clock = clock or local_clock(tz)

    visits = InMemoryVisitRepository(tz=tz)
    registry = PatientRegistry(InMemoryPatientRepository(), visits, clock=clock, tz=tz)
    return QueueEngine(registry, visits, config=config, clock=clock, tz=tz)


_queue_engine: QueueEngine | None = None


def get_queue_engine() -> QueueEngine:
    """Get or create the process-wide queue engine."""
    global _queue_engine
    if _queue_engine is None:
        _queue_engine = build_in_memory_engine(QueueConfig.from_env())
    return _queue_engine
