"""Demo patients and a sample day's queue for local development."""

from datetime import date
from typing import Any

from clinic_queue.services.queue import QueueEngine
from clinic_queue.utils.logging import get_logger

logger = get_logger(__name__)

DEMO_PATIENTS: list[dict[str, Any]] = [
    {
        "name": "Ahmed Benali",
        "phone": "0555123456",
        "email": "ahmed.benali@example.com",
        "birth_date": date(1985, 5, 15),
        "gender": "male",
        "address": "123 Rue des Orangers, Casablanca",
    },
    {
        "name": "Fatima Zahra",
        "phone": "0666789012",
        "email": "fatima.zahra@example.com",
        "birth_date": date(1990, 8, 22),
        "gender": "female",
        "address": "456 Avenue Mohammed V, Rabat",
    },
    {
        "name": "Karim El Fassi",
        "phone": "0777901234",
        "email": "karim.elfassi@example.com",
        "birth_date": date(1978, 11, 30),
        "gender": "male",
        "address": "789 Boulevard Hassan II, Marrakech",
    },
    {
        "name": "Samira Bennis",
        "phone": "0666234567",
        "birth_date": date(1995, 3, 10),
        "gender": "female",
    },
    {
        "name": "Youssef Alaoui",
        "phone": "0555890123",
        "email": "youssef.alaoui@example.com",
        "gender": "male",
        "address": "321 Rue du Commerce, Tanger",
    },
    {
        "name": "Laila Chraibi",
        "phone": "0666345678",
        "email": "laila.chraibi@example.com",
        "birth_date": date(1988, 12, 5),
        "gender": "female",
        "address": "654 Rue Atlas, Fès",
    },
    {
        "name": "Mohamed Tazi",
        "phone": "0555678901",
        "gender": "male",
        "address": "987 Avenue Al Massira, Agadir",
    },
]

# (patient index, reason, number of advances)
DEMO_QUEUE: list[tuple[int, str, int]] = [
    (0, "Suivi mensuel", 2),
    (1, "Contrôle prénatal", 1),
    (2, "Douleurs abdominales", 0),
    (3, "Vaccination", 0),
    (4, "Bilan annuel", 0),
]


async def seed_demo_data(engine: QueueEngine) -> int:
    """Register the demo patients and build today's queue through the engine.

    Returns:
        Number of visits enqueued
    """
    patients = [await engine.registry.register(**fields) for fields in DEMO_PATIENTS]

    for index, reason, advances in DEMO_QUEUE:
        entry = await engine.enqueue(patients[index].id, reason=reason)
        for _ in range(advances):
            await engine.advance(entry.visit.id)

    logger.info(f"Seeded {len(patients)} demo patients and {len(DEMO_QUEUE)} visits")
    return len(DEMO_QUEUE)
