"""Shared fixtures for the clinic queue tests."""

import pytest

from clinic_queue.services.queue import QueueEngine, build_in_memory_engine
from tests.helpers import CLINIC_TZ, FakeClock, at


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to 2026-03-10 09:00 clinic time."""
    return FakeClock(at(2026, 3, 10))


@pytest.fixture
def engine(clock) -> QueueEngine:
    """Queue engine over fresh in-memory storage."""
    return build_in_memory_engine(clock=clock, tz=CLINIC_TZ)


@pytest.fixture
def registry(engine):
    """The engine's patient registry."""
    return engine.registry
