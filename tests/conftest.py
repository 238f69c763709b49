from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from clinic_queue.config import AppConfig
from clinic_queue.db import session_scope
from clinic_queue.models import Department, Patient
from clinic_queue.runtime import build_runtime

GP, DENTAL, CLOSED = 1, 2, 3


class FixedClock:
    """Clock that only moves when the test says so."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 8, 0))


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        database_url=f"sqlite:///{tmp_path / 'queue.sqlite'}",
        display_cache_seconds=0,
        collaborator_timeout_seconds=10,
        jwt_secret="test-secret",
    )


@pytest.fixture
def runtime(config, clock):
    rt = build_runtime(config, clock=clock)
    with session_scope(rt.sessions) as s:
        s.add_all(
            [
                Department(id=GP, code="POLI-001", name="General Practice", is_active=True),
                Department(id=DENTAL, code="POLI-002", name="Dental", is_active=True),
                Department(id=CLOSED, code="POLI-099", name="Old Wing", is_active=False),
                Department(id=4, code="LAB-001", name="Laboratory", is_active=True),
            ]
        )
        s.add_all(
            [
                Patient(id="patient-1", name="Mario Rossi", medical_record_number="RM-0001"),
                Patient(id="patient-2", name="Laura Bianchi", medical_record_number="RM-0002"),
            ]
        )
    rt.registry.update(GP, prefix="A", number_width=3)
    rt.registry.update(DENTAL, prefix="B", number_width=3, allow_recall_after_skip=False)
    rt.registry.update(CLOSED, prefix="Z")
    yield rt
    rt.close()


@pytest.fixture
def engine(runtime):
    return runtime.engine


@pytest.fixture
def take(engine):
    """Takes a ticket and returns it, failing the test if refused."""
    def _take(department_id: int = GP):
        outcome = engine.take(department_id)
        assert outcome.ok, outcome.message
        return outcome.ticket

    return _take
