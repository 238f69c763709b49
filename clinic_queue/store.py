from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Iterator

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from . import state_machine
from .db import session_scope
from .errors import ConcurrencyConflict, DepartmentBusy, OperationFailed, TicketNotFound
from .models import OPEN_STATUSES, Ticket, TicketStatus
from .state_machine import Action

logger = logging.getLogger(__name__)

# name on PostgreSQL, column reference on SQLite
_IN_PROGRESS_MARKERS = ("uq_ticket_in_progress_per_department", "tickets.department_id")


def call_order():
    """Sequence order, with recalled tickets after all the others by recall time."""
    return (Ticket.requeued_at.is_not(None), Ticket.requeued_at, Ticket.sequence_number)


def _violates_in_progress_rule(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _IN_PROGRESS_MARKERS)


class QueueStore:
    """
    Tickets of every service date. Reads use short sessions; every mutation
    is a read-modify-write on one ticket guarded by the `version` column.
    """

    def __init__(self, sessions: sessionmaker[Session]) -> None:
        self.sessions = sessions

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with session_scope(self.sessions) as s:
            yield s

    # =========================
    # Reads
    # =========================
    def get(self, ticket_id: str) -> Ticket:
        with self.transaction() as s:
            t = s.get(Ticket, ticket_id)
            if t is None:
                raise TicketNotFound(f"Ticket {ticket_id} not found.")
            return t

    def list_day(
        self,
        service_date: date,
        department_id: int | None = None,
        statuses: tuple[TicketStatus, ...] | None = None,
    ) -> list[Ticket]:
        q = select(Ticket).where(Ticket.service_date == service_date)
        if department_id is not None:
            q = q.where(Ticket.department_id == department_id)
        if statuses:
            q = q.where(Ticket.status.in_(statuses))
        q = q.order_by(Ticket.department_id, *call_order())

        with self.transaction() as s:
            return list(s.scalars(q))

    def waiting(self, department_id: int, service_date: date, limit: int | None = None) -> list[Ticket]:
        q = (
            select(Ticket)
            .where(
                Ticket.department_id == department_id,
                Ticket.service_date == service_date,
                Ticket.status == TicketStatus.WAITING,
            )
            .order_by(*call_order())
        )
        if limit is not None:
            q = q.limit(limit)
        with self.transaction() as s:
            return list(s.scalars(q))

    def in_progress(self, s: Session, department_id: int, exclude_id: str | None = None) -> Ticket | None:
        q = select(Ticket).where(Ticket.department_id == department_id, Ticket.status == TicketStatus.IN_PROGRESS)
        if exclude_id is not None:
            q = q.where(Ticket.id != exclude_id)
        return s.scalars(q.limit(1)).first()

    def current(self, department_id: int, service_date: date) -> Ticket | None:
        """The ticket in progress, otherwise the most recently called one of the day."""
        with self.transaction() as s:
            t = self.in_progress(s, department_id)
            if t is not None:
                return t
            q = (
                select(Ticket)
                .where(
                    Ticket.department_id == department_id,
                    Ticket.service_date == service_date,
                    Ticket.status == TicketStatus.CALLED,
                )
                .order_by(Ticket.called_at.desc())
                .limit(1)
            )
            return s.scalars(q).first()

    def departments_on(self, service_date: date) -> list[int]:
        q = select(Ticket.department_id).where(Ticket.service_date == service_date).distinct().order_by(Ticket.department_id)
        with self.transaction() as s:
            return list(s.scalars(q))

    def count_issued(self, s: Session, department_id: int, service_date: date) -> int:
        """Tickets of the scope that still count against the daily quota."""
        q = select(func.count(Ticket.id)).where(
            Ticket.department_id == department_id,
            Ticket.service_date == service_date,
            Ticket.status != TicketStatus.CANCELLED,
        )
        return s.execute(q).scalar_one()

    # =========================
    # Writes
    # =========================
    def add(self, s: Session, ticket: Ticket) -> Ticket:
        s.add(ticket)
        s.flush()
        return ticket

    def update(self, ticket_id: str, action: str, change: Callable[[Session, Ticket], None]) -> Ticket:
        """
        Atomic read-modify-write of one ticket.
        - `change` validates and mutates the loaded ticket
        - a concurrent writer that got there first -> ConcurrencyConflict
        - a second ticket in progress for the department -> DepartmentBusy
        """
        seen: TicketStatus | None = None
        try:
            with self.transaction() as s:
                t = s.get(Ticket, ticket_id)
                if t is None:
                    raise TicketNotFound(f"Ticket {ticket_id} not found.")
                seen = t.status
                change(s, t)
            return t
        except StaleDataError:
            logger.warning("Concurrent update on ticket %s lost while trying to %s", ticket_id, action)
            raise ConcurrencyConflict(seen.value if seen else "unknown", action) from None
        except IntegrityError as e:
            if _violates_in_progress_rule(e):
                logger.warning("Start of ticket %s refused: department already serving", ticket_id)
                raise DepartmentBusy("Another ticket of this department is already in progress.") from None
            raise OperationFailed(f"Could not {action} ticket {ticket_id}.") from e

    def cancel_open(self, department_id: int, service_date: date, now: datetime, note: str) -> int:
        """Cancels every waiting/called ticket of the scope; returns how many."""
        q = select(Ticket).where(
            Ticket.department_id == department_id,
            Ticket.service_date == service_date,
            Ticket.status.in_(OPEN_STATUSES),
        )
        try:
            with self.transaction() as s:
                tickets = list(s.scalars(q))
                for t in tickets:
                    state_machine.apply(t, Action.CANCEL, now, note=note)
            return len(tickets)
        except StaleDataError:
            logger.warning("Reset of department %s raced with a ticket update", department_id)
            raise ConcurrencyConflict("open", "reset") from None
