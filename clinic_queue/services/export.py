"""CSV export of the visit queue and the patient registry."""

import csv
import io
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from clinic_queue.models.visit import VisitStatus
from clinic_queue.services.queue import QueueEngine
from clinic_queue.utils.clock import parse_day

VISIT_HEADERS = ["N° File", "Patient", "Téléphone", "Email", "Statut", "Raison", "Heure", "Date"]

PATIENT_HEADERS = [
    "Nom",
    "Téléphone",
    "Email",
    "Date de naissance",
    "Genre",
    "Adresse",
    "Nombre de visites",
    "Dernière visite",
    "Date d'inscription",
]

STATUS_LABELS = {
    VisitStatus.WAITING: "En attente",
    VisitStatus.IN_ROOM: "En consultation",
    VisitStatus.FINISHED: "Terminé",
}

DATE_FORMAT = "%d/%m/%Y"
TIME_FORMAT = "%H:%M:%S"


@dataclass
class CsvExport:
    """A rendered export and the file name to offer it under."""

    filename: str
    content: str
    media_type: str = "text/csv; charset=utf-8"


def render_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render a header line followed by fully quoted rows."""
    buffer = io.StringIO()
    buffer.write(",".join(headers) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if value is None else str(value) for value in row])
    return buffer.getvalue()


async def export_visits(engine: QueueEngine, day: date | str | None = None) -> CsvExport:
    """Export one day's visits (today by default) in queue-number order."""
    target = parse_day(day) if day is not None else engine.today()
    entries = sorted(await engine.list_for_day(target), key=lambda entry: entry.visit.queue_number)

    rows = []
    for entry in entries:
        created = engine.localize(entry.visit.created_at)
        rows.append(
            [
                entry.visit.queue_number,
                entry.display_name,
                entry.display_phone,
                entry.display_email,
                STATUS_LABELS[entry.visit.status],
                entry.visit.reason,
                created.strftime(TIME_FORMAT),
                created.strftime(DATE_FORMAT),
            ]
        )

    return CsvExport(filename=f"visites-{target.isoformat()}.csv", content=render_csv(VISIT_HEADERS, rows))


async def export_patients(engine: QueueEngine) -> CsvExport:
    """Export every patient with visit statistics, newest registration first."""
    rows = []
    for item in await engine.registry.list_patients(with_stats=True):
        patient = item.patient
        rows.append(
            [
                patient.name,
                patient.phone,
                patient.email,
                patient.birth_date.strftime(DATE_FORMAT) if patient.birth_date else None,
                patient.gender,
                patient.address,
                item.visit_count,
                engine.localize(item.last_visit_date).strftime(DATE_FORMAT) if item.last_visit_date else None,
                engine.localize(patient.created_at).strftime(DATE_FORMAT),
            ]
        )

    return CsvExport(filename="patients.csv", content=render_csv(PATIENT_HEADERS, rows))
