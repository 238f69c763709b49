from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import state_machine
from .clock import Clock, service_date
from .directories import Collaborators
from .errors import (
    DepartmentBusy,
    DepartmentNotFound,
    ErrorCode,
    OperationFailed,
    PatientNotFound,
    QueueError,
    QuotaExceeded,
    ScopeUnavailable,
)
from .models import Ticket, TicketStatus
from .sequence import SequenceAllocator
from .settings_registry import QueueSettingsRegistry
from .state_machine import Action
from .store import QueueStore

logger = logging.getLogger(__name__)

DEFAULT_SKIP_NOTE = "Patient not present"
DEFAULT_CANCEL_NOTE = "Cancelled"
RESET_NOTE = "Reset by admin"


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class QueueOutcome:
    ok: bool
    ticket: Ticket | None = None
    count: int | None = None
    error: ErrorCode | None = None
    message: str = ""

    @classmethod
    def failure(cls, exc: QueueError) -> QueueOutcome:
        return cls(False, error=exc.code, message=str(exc))


@dataclass(frozen=True)
class QueueStats:
    service_date: date
    total: int
    by_status: dict[str, int]
    avg_wait_minutes: int
    avg_service_minutes: int
    remaining_quota: int | None = None


@dataclass
class ResetRun:
    reset: dict[int, int] = field(default_factory=dict)
    failed: dict[int, str] = field(default_factory=dict)


def _minutes(deltas: list[float]) -> int:
    return round(sum(deltas) / len(deltas) / 60) if deltas else 0


class QueueEngine:
    """
    Public API of the patient queue.

    Mutating operations return a `QueueOutcome`: business refusals
    (busy department, invalid transition, ...) are outcomes, not exceptions.
    Nothing is retried on the caller's behalf.
    """

    def __init__(
        self,
        store: QueueStore,
        allocator: SequenceAllocator,
        registry: QueueSettingsRegistry,
        collaborators: Collaborators,
        clock: Clock,
    ) -> None:
        self.store = store
        self.allocator = allocator
        self.registry = registry
        self.collaborators = collaborators
        self.clock = clock

    def today(self) -> date:
        return service_date(self.clock)

    def _run(self, what: str, fn: Callable[[], QueueOutcome]) -> QueueOutcome:
        try:
            return fn()
        except QueueError as e:
            logger.info("%s refused: %s (%s)", what, e.code.value, e)
            return QueueOutcome.failure(e)
        except SQLAlchemyError:
            logger.exception("%s failed on storage", what)
            return QueueOutcome.failure(OperationFailed(f"{what} failed, nothing was changed."))

    # =========================
    # Take (kiosk / front desk)
    # =========================
    def take(self, department_id: int) -> QueueOutcome:
        """
        Use case: take a number.
        - department must be active (department service, outside the lock)
        - allocation + insert happen in one transaction: both or neither
        """
        def _take() -> QueueOutcome:
            if not self.collaborators.is_department_active(department_id):
                raise ScopeUnavailable(f"Department {department_id} is not accepting tickets.")

            config = self.registry.find(department_id)
            if config is None or not config.is_active:
                raise ScopeUnavailable(f"No active queue configured for department {department_id}.")

            now = self.clock.now()
            day = now.date()
            with self.store.transaction() as s:
                number = self.allocator.next_sequence(s, department_id, day)
                if self.store.count_issued(s, department_id, day) >= config.daily_quota:
                    raise QuotaExceeded(f"Daily quota of {config.daily_quota} tickets reached.")

                ticket = self.store.add(
                    s,
                    Ticket(
                        department_id=department_id,
                        service_date=day,
                        sequence_number=number,
                        display_code=config.format_code(number),
                        status=TicketStatus.WAITING,
                        called_count=0,
                        created_at=now,
                    ),
                )

            logger.info("Issued %s (department %s, %s)", ticket.display_code, department_id, day)
            return QueueOutcome(True, ticket, message=f"Ticket {ticket.display_code} issued.")

        return self._run("take", _take)

    # =========================
    # Staff actions
    # =========================
    def _transition(
        self, ticket_id: str, action: Action, note: str | None = None, staff_id: str | None = None
    ) -> QueueOutcome:
        def change(s: Session, t: Ticket) -> None:
            allow_recall = True
            if action == Action.RECALL:
                config = self.registry.find(t.department_id)
                allow_recall = bool(config and config.allow_recall_after_skip)
            if action == Action.START and self.store.in_progress(s, t.department_id, exclude_id=t.id) is not None:
                # the status check comes first: a non-startable ticket is an invalid transition
                state_machine.target_status(t.status, action)
                raise DepartmentBusy(f"Another ticket of department {t.department_id} is already in progress.")
            state_machine.apply(
                t, action, self.clock.now(), allow_recall_after_skip=allow_recall, note=note, staff_id=staff_id
            )

        def _do() -> QueueOutcome:
            ticket = self.store.update(ticket_id, action.value, change)
            logger.info("%s -> %s (%s)", ticket.display_code, ticket.status.value, action.value)
            return QueueOutcome(True, ticket, message=f"Ticket {ticket.display_code} is {ticket.status.value}.")

        return self._run(action.value, _do)

    def call(self, ticket_id: str, staff_id: str | None = None) -> QueueOutcome:
        return self._transition(ticket_id, Action.CALL, staff_id=staff_id)

    def start(self, ticket_id: str, staff_id: str | None = None) -> QueueOutcome:
        return self._transition(ticket_id, Action.START, staff_id=staff_id)

    def complete(self, ticket_id: str) -> QueueOutcome:
        return self._transition(ticket_id, Action.COMPLETE)

    def skip(self, ticket_id: str, note: str | None = None) -> QueueOutcome:
        return self._transition(ticket_id, Action.SKIP, note or DEFAULT_SKIP_NOTE)

    def cancel(self, ticket_id: str, note: str | None = None) -> QueueOutcome:
        return self._transition(ticket_id, Action.CANCEL, note or DEFAULT_CANCEL_NOTE)

    def recall(self, ticket_id: str) -> QueueOutcome:
        return self._transition(ticket_id, Action.RECALL)

    def assign_patient(self, ticket_id: str, patient_id: str) -> QueueOutcome:
        """
        Use case: link a walk-in ticket to a patient record.
        The patient check is I/O against the patient service: it runs before
        the ticket transaction, then the status is checked again on write.
        """
        def _assign() -> QueueOutcome:
            state_machine.check_assignable(self.store.get(ticket_id))
            if not self.collaborators.patient_exists(patient_id):
                raise PatientNotFound(f"Patient {patient_id} not found.")

            ticket = self.store.update(
                ticket_id, "assign", lambda s, t: state_machine.assign_patient(t, patient_id)
            )
            logger.info("Patient assigned to %s", ticket.display_code)
            return QueueOutcome(True, ticket, message=f"Patient assigned to {ticket.display_code}.")

        return self._run("assign", _assign)

    # =========================
    # Reset
    # =========================
    def reset(self, department_id: int) -> QueueOutcome:
        """
        Administrative escape hatch: cancels the waiting/called tickets of the
        department for the current service date. In-progress and finished
        tickets, and other dates, are left alone.
        """
        def _reset() -> QueueOutcome:
            d = self.collaborators.department(department_id)
            if d is None:
                raise DepartmentNotFound(f"Department {department_id} not found.")
            if not d.is_active:
                raise ScopeUnavailable(f"Department {department_id} is not active.")

            now = self.clock.now()
            count = self.store.cancel_open(department_id, now.date(), now, RESET_NOTE)
            logger.info("Reset of department %s: %s tickets cancelled", department_id, count)
            return QueueOutcome(True, count=count, message=f"{count} tickets reset.")

        return self._run("reset", _reset)

    def run_scheduled_resets(self) -> ResetRun:
        """Resets every department whose daily reset time has passed and whose scheduled reset has not run today."""
        now = self.clock.now()
        run = ResetRun()
        for config in self.registry.list_all():
            at = config.reset_time()
            if at is None or not config.is_active:
                continue
            if now.time() < at or config.last_reset_on == now.date():
                continue
            outcome = self.reset(config.department_id)
            if outcome.ok:
                # only the scheduled run counts: a manual reset earlier today does not skip it
                self.registry.mark_reset(config.department_id, now.date())
                run.reset[config.department_id] = outcome.count or 0
            else:
                run.failed[config.department_id] = outcome.message
        return run

    # =========================
    # Queries
    # =========================
    def get(self, ticket_id: str) -> QueueOutcome:
        return self._run("get", lambda: QueueOutcome(True, self.store.get(ticket_id)))

    def today_tickets(self, department_id: int | None = None) -> list[Ticket]:
        return self.store.list_day(self.today(), department_id)

    def currently_serving(self, department_id: int) -> Ticket | None:
        return self.store.current(department_id, self.today())

    def stats(self, department_id: int | None = None, on: date | None = None) -> QueueStats:
        day = on or self.today()
        tickets = self.store.list_day(day, department_id)

        counts = Counter(t.status.value for t in tickets)
        by_status = {s.value: counts.get(s.value, 0) for s in TicketStatus}

        done = [t for t in tickets if t.status == TicketStatus.COMPLETED]
        waits = [(t.called_at - t.created_at).total_seconds() for t in done if t.called_at]
        services = [
            (t.completed_at - t.started_at).total_seconds() for t in done if t.started_at and t.completed_at
        ]

        remaining = None
        if department_id is not None:
            config = self.registry.find(department_id)
            if config is not None:
                issued = len(tickets) - counts.get(TicketStatus.CANCELLED.value, 0)
                remaining = max(0, config.daily_quota - issued)

        return QueueStats(
            service_date=day,
            total=len(tickets),
            by_status=by_status,
            avg_wait_minutes=_minutes(waits),
            avg_service_minutes=_minutes(services),
            remaining_quota=remaining,
        )


