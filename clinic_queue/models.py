from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class TicketStatus(enum.Enum):
    WAITING = "waiting"
    CALLED = "called"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


OPEN_STATUSES = (TicketStatus.WAITING, TicketStatus.CALLED)


# =========================
# Collaborator tables
# =========================
# Departments and patients are owned by other services of the clinic; these
# tables are the local directory the SQL collaborators read from.
class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"Department({self.code}, {self.name})"


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    medical_record_number: Mapped[str | None] = mapped_column(String(30), nullable=True, unique=True)


# =========================
# Queue engine tables
# =========================
class QueueSetting(Base):
    __tablename__ = "queue_settings"

    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), primary_key=True)
    prefix: Mapped[str] = mapped_column(String(5), nullable=False)
    number_width: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    # "manual" or a local "HH:MM"
    reset_schedule: Mapped[str] = mapped_column(String(10), default="manual", nullable=False)
    allow_recall_after_skip: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    daily_quota: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_reset_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class QueueSequence(Base):
    """Last number issued per scope (department, service date)."""
    __tablename__ = "queue_sequences"

    department_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_date: Mapped[date] = mapped_column(Date, primary_key=True)
    last_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("department_id", "service_date", "sequence_number", name="uq_ticket_scope_sequence"),
        Index("ix_ticket_date_department", "service_date", "department_id"),
        Index("ix_ticket_date_status", "service_date", "status"),
        # One service point per department: at most one ticket in progress
        Index(
            "uq_ticket_in_progress_per_department",
            "department_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    department_id: Mapped[int] = mapped_column(Integer, nullable=False)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    display_code: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus, name="ticket_status", values_callable=lambda e: [m.value for m in e]),
        default=TicketStatus.WAITING,
        nullable=False,
    )
    patient_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    # staff user who last called or started the ticket
    served_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    called_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    skipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # set by Recall: the ticket goes to the back of the call order
    requeued_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    called_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"Ticket({self.display_code}, {self.status.value})"
