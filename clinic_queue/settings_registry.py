from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .db import session_scope
from .directories import Collaborators
from .errors import DepartmentNotFound, InvalidSettings
from .models import QueueSetting

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class DepartmentQueueConfig:
    department_id: int
    prefix: str
    number_width: int = 3
    reset_schedule: str = "manual"
    allow_recall_after_skip: bool = True
    daily_quota: int = 50
    is_active: bool = True
    last_reset_on: date | None = None

    def format_code(self, sequence_number: int) -> str:
        return f"{self.prefix}{sequence_number:0{self.number_width}d}"

    def reset_time(self) -> time | None:
        """Local time of the automatic reset, None when manual-only."""
        m = _HHMM.match(self.reset_schedule)
        return time(int(m.group(1)), int(m.group(2))) if m else None

    @classmethod
    def from_row(cls, row: QueueSetting) -> DepartmentQueueConfig:
        return cls(
            department_id=row.department_id,
            prefix=row.prefix,
            number_width=row.number_width,
            reset_schedule=row.reset_schedule,
            allow_recall_after_skip=row.allow_recall_after_skip,
            daily_quota=row.daily_quota,
            is_active=row.is_active,
            last_reset_on=row.last_reset_on,
        )


EDITABLE = {f.name for f in fields(DepartmentQueueConfig)} - {"department_id", "last_reset_on"}


def validate(config: DepartmentQueueConfig) -> DepartmentQueueConfig:
    prefix = (config.prefix or "").strip().upper()
    if not prefix or len(prefix) > 5:
        raise InvalidSettings("Prefix must be 1 to 5 characters.")
    if not 1 <= config.number_width <= 6:
        raise InvalidSettings("Number width must be between 1 and 6 digits.")
    if config.reset_schedule != "manual" and not _HHMM.match(config.reset_schedule):
        raise InvalidSettings("Reset schedule must be 'manual' or a local time HH:MM.")
    if not 1 <= config.daily_quota <= 500:
        raise InvalidSettings("Daily quota must be between 1 and 500.")
    return replace(config, prefix=prefix)


class QueueSettingsRegistry:
    """
    Per-department queue configuration.
    Changes apply to tickets issued afterwards: display codes already issued
    are never reformatted.
    """

    def __init__(self, sessions: sessionmaker[Session], collaborators: Collaborators) -> None:
        self.sessions = sessions
        self.collaborators = collaborators

    def find(self, department_id: int) -> DepartmentQueueConfig | None:
        """Stored config, without asking the department service."""
        with session_scope(self.sessions) as s:
            row = s.get(QueueSetting, department_id)
            return DepartmentQueueConfig.from_row(row) if row else None

    def _require_department(self, department_id: int) -> str:
        d = self.collaborators.department(department_id)
        if d is None:
            raise DepartmentNotFound(f"Department {department_id} not found.")
        return d.name

    @staticmethod
    def _default_for(department_id: int, name: str) -> DepartmentQueueConfig:
        return DepartmentQueueConfig(
            department_id=department_id,
            prefix=(name[:1] or "Q").upper(),
            is_active=False,
        )

    def get(self, department_id: int) -> DepartmentQueueConfig:
        config = self.find(department_id)
        if config is not None:
            return config
        name = self._require_department(department_id)
        return self._default_for(department_id, name)

    def list_all(self) -> list[DepartmentQueueConfig]:
        """
        Stored configs plus a default (inactive) entry for every active
        department that has none yet.
        """
        with session_scope(self.sessions) as s:
            stored = [DepartmentQueueConfig.from_row(r) for r in s.scalars(select(QueueSetting).order_by(QueueSetting.department_id))]

        configured = {c.department_id for c in stored}
        missing = [
            self._default_for(d.id, d.name)
            for d in self.collaborators.list_departments()
            if d.is_active and d.id not in configured
        ]
        return sorted(stored + missing, key=lambda c: c.department_id)

    def update(self, department_id: int, **changes: Any) -> DepartmentQueueConfig:
        """Create or update (upsert) the config of a department."""
        unknown = set(changes) - EDITABLE
        if unknown:
            raise InvalidSettings(f"Unknown settings: {', '.join(sorted(unknown))}")

        name = self._require_department(department_id)

        with session_scope(self.sessions) as s:
            row = s.get(QueueSetting, department_id)
            current = DepartmentQueueConfig.from_row(row) if row else self._default_for(department_id, name)
            if row is None:
                # a config that is being saved is active unless told otherwise
                current = replace(current, is_active=True)
            config = validate(replace(current, **changes))

            if row is None:
                row = QueueSetting(department_id=department_id)
                s.add(row)
            row.prefix = config.prefix
            row.number_width = config.number_width
            row.reset_schedule = config.reset_schedule
            row.allow_recall_after_skip = config.allow_recall_after_skip
            row.daily_quota = config.daily_quota
            row.is_active = config.is_active
            row.updated_at = datetime.utcnow()

        logger.info("Queue settings of department %s saved: %s", department_id, config)
        return config

    def mark_reset(self, department_id: int, on: date) -> None:
        with session_scope(self.sessions) as s:
            row = s.get(QueueSetting, department_id)
            if row is not None:
                row.last_reset_on = on
