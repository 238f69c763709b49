from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .db import session_scope
from .models import Department, QueueSetting

# code, name, queue prefix, daily quota
DEPARTMENTS = [
    ("POLI-001", "General Practice", "A", 50),
    ("POLI-002", "Dental", "B", 30),
    ("POLI-003", "Pediatrics", "C", 40),
    ("POLI-004", "Obstetrics", "D", 25),
    ("POLI-005", "Ophthalmology", "E", 30),
    ("POLI-006", "ENT", "F", 30),
    ("POLI-007", "Dermatology", "G", 30),
    ("LAB-001", "Laboratory", "L", 100),
    ("RAD-001", "Radiology", "R", 50),
    ("FARM-001", "Pharmacy", "P", 200),
]


def seed_base(sessions: sessionmaker[Session]) -> None:
    """
    Loads the minimal data (idempotent):
    - departments of the local directory
    - one queue setting per department
    """
    with session_scope(sessions) as s:
        for code, name, prefix, quota in DEPARTMENTS:
            d = s.execute(select(Department).where(Department.code == code)).scalar_one_or_none()
            if d is None:
                d = Department(code=code, name=name, is_active=True)
                s.add(d)
                s.flush()

            if s.get(QueueSetting, d.id) is None:
                s.add(QueueSetting(department_id=d.id, prefix=prefix, daily_quota=quota, is_active=True))
