"""Tests for the queue engine."""

import asyncio
from datetime import date

import pytest

from clinic_queue.config import QueueConfig
from clinic_queue.errors import (
    DuplicatePhoneError,
    FieldValidationError,
    InvalidTransitionError,
    NotFoundError,
    PatientNotFoundError,
    QueueNumberConflictError,
)
from clinic_queue.models.visit import VisitStatus
from clinic_queue.services.ledger import InMemoryVisitRepository
from clinic_queue.services.patients import InMemoryPatientRepository
from clinic_queue.services.queue import QueueEngine
from clinic_queue.services.registry import PatientRegistry
from tests.helpers import CLINIC_TZ, at


class StaleReadLedger(InMemoryVisitRepository):
    """Ledger whose first max_queue_number reads come back stale, like a lagging replica."""

    def __init__(self, stale_reads: int, **kwargs):
        super().__init__(**kwargs)
        self.stale_reads = stale_reads
        self.insert_attempts = 0

    async def max_queue_number(self, start, end):
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return None
        return await super().max_queue_number(start, end)

    async def insert(self, visit):
        self.insert_attempts += 1
        return await super().insert(visit)


def build_engine(clock, visits: InMemoryVisitRepository, max_attempts: int = 3) -> QueueEngine:
    registry = PatientRegistry(InMemoryPatientRepository(), visits, clock=clock, tz=CLINIC_TZ)
    return QueueEngine(
        registry,
        visits,
        config=QueueConfig(enqueue_max_attempts=max_attempts),
        clock=clock,
        tz=CLINIC_TZ,
    )


class TestEnqueue:
    """Tests for queue number assignment."""

    @pytest.mark.asyncio
    async def test_enqueue_assigns_sequential_numbers(self, engine, registry):
        """Test that visits on the same day get 1, 2, 3."""
        ahmed = await registry.register("Ahmed", "0555123456")
        fatima = await registry.register("Fatima", "0666789012")

        first = await engine.enqueue(ahmed.id)
        second = await engine.enqueue(fatima.id)
        third = await engine.enqueue(ahmed.id, reason="Suivi")

        assert [e.visit.queue_number for e in (first, second, third)] == [1, 2, 3]
        assert third.visit.reason == "Suivi"

    @pytest.mark.asyncio
    async def test_enqueue_snapshots_patient_and_joins_live(self, engine, registry, clock):
        """Test that the visit copies name/phone and returns the live join."""
        patient = await registry.register("Ahmed Benali", "0555123456", email="ahmed@example.com")

        entry = await engine.enqueue(patient.id)

        assert entry.visit.status == VisitStatus.WAITING
        assert entry.visit.patient_name == "Ahmed Benali"
        assert entry.visit.patient_phone == "0555123456"
        assert entry.visit.created_at == clock()
        assert entry.patient is not None
        assert entry.patient.email == "ahmed@example.com"

    @pytest.mark.asyncio
    async def test_enqueue_unknown_patient_creates_nothing(self, engine):
        """Test that a missing patient fails and leaves the ledger untouched."""
        with pytest.raises(PatientNotFoundError):
            await engine.enqueue("missing-patient")

        assert await engine.list_for_day() == []

    @pytest.mark.asyncio
    async def test_enqueue_requires_patient_id(self, engine):
        """Test that a blank patient id is a validation failure."""
        with pytest.raises(FieldValidationError):
            await engine.enqueue("  ")

    @pytest.mark.asyncio
    async def test_numbering_restarts_each_day(self, engine, registry, clock):
        """Test that a new local day starts again at 1."""
        patient = await registry.register("Ahmed", "0555123456")
        await engine.enqueue(patient.id)
        await engine.enqueue(patient.id)

        clock.advance(days=1)
        entry = await engine.enqueue(patient.id)

        assert entry.visit.queue_number == 1

    @pytest.mark.asyncio
    async def test_concurrent_enqueues_get_contiguous_numbers(self, engine, registry):
        """Test that K concurrent enqueues on one day yield exactly 1..K."""
        patients = [await registry.register(f"Patient {i}", f"0555000{i:03d}") for i in range(5)]

        entries = await asyncio.gather(*(engine.enqueue(patients[i % 5].id) for i in range(25)))

        numbers = sorted(entry.visit.queue_number for entry in entries)
        assert numbers == list(range(1, 26))

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, clock):
        """Test that a ledger uniqueness conflict is retried with a fresh read."""
        visits = StaleReadLedger(stale_reads=1, tz=CLINIC_TZ)
        engine = build_engine(clock, visits)
        patient = await engine.registry.register("Ahmed", "0555123456")

        first = await engine.enqueue(patient.id)  # stale read of an empty day is still correct
        second = await engine.enqueue(patient.id)  # no stale reads left

        assert (first.visit.queue_number, second.visit.queue_number) == (1, 2)

        visits.stale_reads = 1
        third = await engine.enqueue(patient.id)

        assert third.visit.queue_number == 3
        assert visits.insert_attempts == 4

    @pytest.mark.asyncio
    async def test_conflict_surfaces_after_max_attempts(self, clock):
        """Test that the engine gives up once every attempt conflicts."""
        visits = StaleReadLedger(stale_reads=0, tz=CLINIC_TZ)
        engine = build_engine(clock, visits, max_attempts=2)
        patient = await engine.registry.register("Ahmed", "0555123456")
        await engine.enqueue(patient.id)

        visits.stale_reads = 2
        with pytest.raises(QueueNumberConflictError):
            await engine.enqueue(patient.id)

        assert len(await engine.list_for_day()) == 1


class TestAdvance:
    """Tests for the advance-to-next-status primitive."""

    @pytest.mark.asyncio
    async def test_advance_walks_the_workflow(self, engine, registry):
        """Test WAITING -> IN_ROOM -> FINISHED."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        in_room = await engine.advance(entry.visit.id)
        finished = await engine.advance(entry.visit.id)

        assert in_room.visit.status == VisitStatus.IN_ROOM
        assert finished.visit.status == VisitStatus.FINISHED

    @pytest.mark.asyncio
    async def test_advance_from_finished_never_changes_status(self, engine, registry):
        """Test that FINISHED is terminal."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)
        await engine.advance(entry.visit.id)
        await engine.advance(entry.visit.id)

        with pytest.raises(InvalidTransitionError):
            await engine.advance(entry.visit.id)

        assert (await engine.get(entry.visit.id)).visit.status == VisitStatus.FINISHED

    @pytest.mark.asyncio
    async def test_advance_from_finished_still_writes_reason(self, engine, registry):
        """Test that a reason supplied to a FINISHED visit is written without a status change."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id, reason="Initial")
        await engine.advance(entry.visit.id)
        await engine.advance(entry.visit.id)

        updated = await engine.advance(entry.visit.id, reason="Ordonnance remise")

        assert updated.visit.status == VisitStatus.FINISHED
        assert updated.visit.reason == "Ordonnance remise"

    @pytest.mark.asyncio
    async def test_advance_touches_updated_at(self, engine, registry, clock):
        """Test that writes refresh updated_at."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        clock.advance(minutes=15)
        updated = await engine.advance(entry.visit.id)

        assert updated.visit.updated_at == clock()
        assert updated.visit.created_at == entry.visit.created_at

    @pytest.mark.asyncio
    async def test_advance_unknown_visit(self, engine):
        """Test that a missing visit fails with NotFoundError."""
        with pytest.raises(NotFoundError):
            await engine.advance("missing-visit")

    @pytest.mark.asyncio
    async def test_concurrent_advances_are_serialized(self, engine, registry):
        """Test that two concurrent advances move the visit exactly two steps."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        results = await asyncio.gather(engine.advance(entry.visit.id), engine.advance(entry.visit.id))

        assert sorted(r.visit.status for r in results) == sorted([VisitStatus.IN_ROOM, VisitStatus.FINISHED])
        assert (await engine.get(entry.visit.id)).visit.status == VisitStatus.FINISHED


class TestTransition:
    """Tests for explicitly requested status changes."""

    @pytest.mark.asyncio
    async def test_transition_to_successor(self, engine, registry):
        """Test that the sanctioned successor is accepted."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        updated = await engine.transition(entry.visit.id, "IN_ROOM")

        assert updated.visit.status == VisitStatus.IN_ROOM

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("advances", "target"),
        [
            (0, VisitStatus.FINISHED),
            (0, VisitStatus.WAITING),
            (1, VisitStatus.WAITING),
            (2, VisitStatus.IN_ROOM),
            (2, VisitStatus.FINISHED),
        ],
    )
    async def test_illegal_transitions_are_rejected(self, engine, registry, advances, target):
        """Test that skips, backward moves and moves out of FINISHED fail."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)
        for _ in range(advances):
            await engine.advance(entry.visit.id)
        before = (await engine.get(entry.visit.id)).visit.status

        with pytest.raises(InvalidTransitionError):
            await engine.transition(entry.visit.id, target)

        assert (await engine.get(entry.visit.id)).visit.status == before

    @pytest.mark.asyncio
    async def test_unknown_status_value(self, engine, registry):
        """Test that a status outside the enum is a validation failure."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        with pytest.raises(FieldValidationError):
            await engine.transition(entry.visit.id, "CANCELLED")


class TestPatientSnapshot:
    """Tests for denormalized name/phone consistency."""

    @pytest.mark.asyncio
    async def test_sync_propagates_to_patient_and_visit(self, engine, registry):
        """Test that editing contact details through a visit updates both records."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        synced = await engine.sync_patient_snapshot(
            entry.visit.id, name="Ahmed Benali", phone="0555999999", email="ahmed@example.com"
        )

        assert synced.visit.patient_name == "Ahmed Benali"
        assert synced.visit.patient_phone == "0555999999"
        stored = await registry.get(patient.id)
        assert (stored.name, stored.phone, stored.email) == ("Ahmed Benali", "0555999999", "ahmed@example.com")

    @pytest.mark.asyncio
    async def test_sync_email_only_touches_patient(self, engine, registry):
        """Test that an email change leaves the visit snapshot alone."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        synced = await engine.sync_patient_snapshot(entry.visit.id, email="new@example.com")

        assert synced.visit.updated_at == entry.visit.updated_at
        assert synced.display_email == "new@example.com"

    @pytest.mark.asyncio
    async def test_sync_rejects_phone_of_another_patient(self, engine, registry):
        """Test that a colliding phone fails and changes nothing."""
        ahmed = await registry.register("Ahmed", "0555123456")
        await registry.register("Fatima", "0666789012")
        entry = await engine.enqueue(ahmed.id)

        with pytest.raises(DuplicatePhoneError):
            await engine.sync_patient_snapshot(entry.visit.id, name="Renamed", phone="0666789012")

        assert (await registry.get(ahmed.id)).name == "Ahmed"
        assert (await engine.get(entry.visit.id)).visit.patient_name == "Ahmed"

    @pytest.mark.asyncio
    async def test_snapshot_drifts_until_synced(self, engine, registry):
        """Test that a plain patient edit leaves the snapshot stale while the live join wins."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        await registry.update(patient.id, {"phone": "0555000111"})
        stale = await engine.get(entry.visit.id)

        assert stale.visit.patient_phone == "0555123456"
        assert stale.display_phone == "0555000111"

        synced = await engine.sync_patient_snapshot(entry.visit.id, phone="0555000111")
        assert synced.visit.patient_phone == "0555000111"

    @pytest.mark.asyncio
    async def test_update_patient_with_propagation(self, engine, registry, clock):
        """Test that update_patient(propagate=True) rewrites every visit's snapshot."""
        patient = await registry.register("Ahmed", "0555123456")
        first = await engine.enqueue(patient.id)
        clock.advance(days=1)
        second = await engine.enqueue(patient.id)

        await engine.update_patient(patient.id, {"name": "Ahmed Benali"}, propagate=True)

        for entry in (first, second):
            assert (await engine.get(entry.visit.id)).visit.patient_name == "Ahmed Benali"

    @pytest.mark.asyncio
    async def test_update_patient_without_propagation(self, engine, registry):
        """Test that update_patient leaves snapshots alone by default."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        await engine.update_patient(patient.id, {"name": "Ahmed Benali"})

        assert (await engine.get(entry.visit.id)).visit.patient_name == "Ahmed"

    @pytest.mark.asyncio
    async def test_snapshot_is_fallback_when_patient_is_gone(self, engine, registry):
        """Test that a visit whose patient cannot be joined still displays its snapshot."""
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)
        registry.patients.patients.pop(patient.id)

        orphan = await engine.get(entry.visit.id)

        assert orphan.patient is None
        assert orphan.display_name == "Ahmed"
        assert orphan.display_phone == "0555123456"


class TestUpdateVisit:
    """Tests for the combined visit edit."""

    @pytest.mark.asyncio
    async def test_status_and_reason(self, engine, registry):
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        updated = await engine.update_visit(entry.visit.id, status=VisitStatus.IN_ROOM, reason="Fièvre")

        assert updated.visit.status == VisitStatus.IN_ROOM
        assert updated.visit.reason == "Fièvre"

    @pytest.mark.asyncio
    async def test_blank_reason_clears(self, engine, registry):
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id, reason="Fièvre")

        updated = await engine.update_visit(entry.visit.id, reason="")

        assert updated.visit.reason is None

    @pytest.mark.asyncio
    async def test_patient_fields_and_status(self, engine, registry):
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        updated = await engine.update_visit(entry.visit.id, status="IN_ROOM", patient_name="Ahmed Benali")

        assert updated.visit.status == VisitStatus.IN_ROOM
        assert updated.visit.patient_name == "Ahmed Benali"
        assert updated.display_name == "Ahmed Benali"

    @pytest.mark.asyncio
    async def test_rejected_transition_changes_nothing(self, engine, registry):
        """Test that an illegal status leaves both the patient and the snapshot untouched."""
        patient = await registry.register("Ahmed", "0555123456", email="ahmed@example.com")
        entry = await engine.enqueue(patient.id, reason="Fièvre")

        with pytest.raises(InvalidTransitionError):
            await engine.update_visit(
                entry.visit.id,
                status=VisitStatus.FINISHED,
                reason="Autre",
                patient_name="Changed",
                patient_phone="0555000000",
                patient_email="",
            )

        stored = await registry.get(patient.id)
        visit = (await engine.get(entry.visit.id)).visit
        assert (stored.name, stored.phone, stored.email) == ("Ahmed", "0555123456", "ahmed@example.com")
        assert (visit.patient_name, visit.patient_phone) == ("Ahmed", "0555123456")
        assert (visit.status, visit.reason) == (VisitStatus.WAITING, "Fièvre")
        assert visit.updated_at == entry.visit.updated_at

    @pytest.mark.asyncio
    async def test_blank_email_clears_patient_email(self, engine, registry):
        patient = await registry.register("Ahmed", "0555123456", email="ahmed@example.com")
        entry = await engine.enqueue(patient.id)

        updated = await engine.update_visit(entry.visit.id, patient_email="")

        assert updated.display_email is None
        assert (await registry.get(patient.id)).email is None


class TestDayQueries:
    """Tests for day-scoped listing and statistics."""

    @pytest.mark.asyncio
    async def test_example_day(self, engine, registry):
        """Test the two-visit example: one finished, one waiting."""
        patient = await registry.register("Ahmed", "0555123456")
        first = await engine.enqueue(patient.id)
        second = await engine.enqueue(patient.id)
        assert [first.visit.queue_number, second.visit.queue_number] == [1, 2]

        await engine.advance(first.visit.id)
        await engine.advance(first.visit.id)
        stats = await engine.stats_for_day(engine.today())

        assert stats.as_dict() == {"total": 2, "waiting": 1, "in_room": 0, "finished": 1}

    @pytest.mark.asyncio
    async def test_list_orders_by_status_then_number(self, engine, registry):
        """Test WAITING before IN_ROOM before FINISHED, then queue number."""
        patient = await registry.register("Ahmed", "0555123456")
        entries = [await engine.enqueue(patient.id) for _ in range(5)]
        await engine.advance(entries[0].visit.id)
        await engine.advance(entries[0].visit.id)
        await engine.advance(entries[3].visit.id)

        listed = await engine.list_for_day(date(2026, 3, 10))

        assert [(e.visit.status, e.visit.queue_number) for e in listed] == [
            (VisitStatus.WAITING, 2),
            (VisitStatus.WAITING, 3),
            (VisitStatus.WAITING, 5),
            (VisitStatus.IN_ROOM, 4),
            (VisitStatus.FINISHED, 1),
        ]

    @pytest.mark.asyncio
    async def test_day_boundaries(self, engine, registry, clock):
        """Test that 23:59:59 and 00:00:01 land in different day buckets."""
        patient = await registry.register("Ahmed", "0555123456")
        clock.set(at(2026, 3, 10, 23, 59, 59))
        late = await engine.enqueue(patient.id)
        clock.set(at(2026, 3, 11, 0, 0, 1))
        early = await engine.enqueue(patient.id)

        day_one = await engine.list_for_day(date(2026, 3, 10))
        day_two = await engine.list_for_day("2026-03-11")

        assert [e.visit.id for e in day_one] == [late.visit.id]
        assert [e.visit.id for e in day_two] == [early.visit.id]
        assert early.visit.queue_number == 1

    @pytest.mark.asyncio
    async def test_no_day_lists_everything(self, engine, registry, clock):
        """Test that omitting the day returns visits across all days."""
        patient = await registry.register("Ahmed", "0555123456")
        await engine.enqueue(patient.id)
        clock.advance(days=2)
        await engine.enqueue(patient.id)

        assert len(await engine.list_for_day()) == 2
        assert (await engine.stats_for_day()).total == 2
        assert (await engine.stats_for_day(engine.today())).total == 1

    @pytest.mark.asyncio
    async def test_unparseable_day(self, engine):
        """Test that a malformed date is a validation failure."""
        with pytest.raises(FieldValidationError):
            await engine.list_for_day("10/03/2026")

    @pytest.mark.asyncio
    async def test_board_returns_visits_and_stats(self, engine, registry):
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)
        await engine.advance(entry.visit.id)

        visits, stats = await engine.board("2026-03-10")

        assert len(visits) == 1
        assert stats.in_room == 1


class TestRemoveVisit:
    """Tests for visit deletion."""

    @pytest.mark.asyncio
    async def test_remove_visit(self, engine, registry):
        patient = await registry.register("Ahmed", "0555123456")
        entry = await engine.enqueue(patient.id)

        await engine.remove(entry.visit.id)

        assert await engine.list_for_day() == []
        assert await registry.get(patient.id)

    @pytest.mark.asyncio
    async def test_remove_unknown_visit(self, engine):
        with pytest.raises(NotFoundError):
            await engine.remove("missing-visit")
