from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from .clock import Clock, SystemClock
from .config import AppConfig
from .db import init_db, make_engine, make_session_factory
from .directories import (
    Collaborators,
    HttpDepartmentDirectory,
    HttpPatientDirectory,
    SqlDepartmentDirectory,
    SqlPatientDirectory,
)
from .display import DisplayFeed
from .engine import QueueEngine
from .sequence import SequenceAllocator
from .settings_registry import QueueSettingsRegistry
from .store import QueueStore


@dataclass
class QueueRuntime:
    """Every long-lived object of the process, built once at start-up."""
    config: AppConfig
    db_engine: Engine
    sessions: sessionmaker[Session]
    collaborators: Collaborators
    registry: QueueSettingsRegistry
    store: QueueStore
    engine: QueueEngine
    display: DisplayFeed

    def close(self) -> None:
        self.collaborators.close()
        self.db_engine.dispose()


def build_runtime(config: AppConfig, clock: Clock | None = None) -> QueueRuntime:
    db_engine = make_engine(config.database_url)
    init_db(db_engine)
    sessions = make_session_factory(db_engine)
    clock = clock or SystemClock(config.clinic_timezone)

    timeout = config.collaborator_timeout_seconds
    patients = (
        HttpPatientDirectory(config.patient_service_url, timeout)
        if config.patient_service_url
        else SqlPatientDirectory(sessions)
    )
    departments = (
        HttpDepartmentDirectory(config.department_service_url, timeout)
        if config.department_service_url
        else SqlDepartmentDirectory(sessions)
    )
    collaborators = Collaborators(patients, departments, timeout_seconds=timeout)

    registry = QueueSettingsRegistry(sessions, collaborators)
    store = QueueStore(sessions)
    engine = QueueEngine(store, SequenceAllocator(), registry, collaborators, clock)
    display = DisplayFeed(store, clock, next_up=config.display_next_up, cache_seconds=config.display_cache_seconds)

    return QueueRuntime(
        config=config,
        db_engine=db_engine,
        sessions=sessions,
        collaborators=collaborators,
        registry=registry,
        store=store,
        engine=engine,
        display=display,
    )
