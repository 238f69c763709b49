"""
Ticket lifecycle.

    waiting --call--> called --start--> in_progress --complete--> completed
    called  --call--> called                (recall to the board, calledCount + 1)
    waiting/called --skip--> skipped --recall--> waiting   (if the department allows it)
    waiting/called/in_progress --cancel--> cancelled

Every status change goes through `apply`; nothing else writes `Ticket.status`.
"""
from __future__ import annotations

import enum
from datetime import datetime

from .errors import AssignmentNotAllowed, InvalidTransition
from .models import OPEN_STATUSES, Ticket, TicketStatus


class Action(enum.Enum):
    CALL = "call"
    START = "start"
    COMPLETE = "complete"
    SKIP = "skip"
    RECALL = "recall"
    CANCEL = "cancel"


W, C, P = TicketStatus.WAITING, TicketStatus.CALLED, TicketStatus.IN_PROGRESS

TRANSITIONS: dict[tuple[TicketStatus, Action], TicketStatus] = {
    (W, Action.CALL): C,
    (C, Action.CALL): C,
    (C, Action.START): P,
    (P, Action.COMPLETE): TicketStatus.COMPLETED,
    (W, Action.SKIP): TicketStatus.SKIPPED,
    (C, Action.SKIP): TicketStatus.SKIPPED,
    (TicketStatus.SKIPPED, Action.RECALL): W,
    (W, Action.CANCEL): TicketStatus.CANCELLED,
    (C, Action.CANCEL): TicketStatus.CANCELLED,
    (P, Action.CANCEL): TicketStatus.CANCELLED,
}


def target_status(current: TicketStatus, action: Action) -> TicketStatus:
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransition(current.value, action.value) from None


def apply(
    ticket: Ticket,
    action: Action,
    now: datetime,
    allow_recall_after_skip: bool = True,
    note: str | None = None,
    staff_id: str | None = None,
) -> Ticket:
    """
    Validates the transition and applies its side effects on the ticket.
    `staff_id` is recorded as `served_by` on call and start.
    """
    new_status = target_status(ticket.status, action)

    if action == Action.RECALL and not allow_recall_after_skip:
        raise InvalidTransition(
            ticket.status.value,
            action.value,
            f"Department {ticket.department_id} does not allow recalling skipped tickets.",
        )

    if action == Action.CALL:
        ticket.called_at = now
        ticket.called_count = (ticket.called_count or 0) + 1
        ticket.served_by = staff_id or ticket.served_by
    elif action == Action.START:
        ticket.started_at = now
        ticket.served_by = staff_id or ticket.served_by
    elif action == Action.COMPLETE:
        ticket.completed_at = now
    elif action == Action.SKIP:
        ticket.skipped_at = now
    elif action == Action.RECALL:
        ticket.skipped_at = None
        ticket.requeued_at = now
    elif action == Action.CANCEL:
        ticket.cancelled_at = now

    if note is not None:
        ticket.notes = note

    ticket.status = new_status
    return ticket


def check_assignable(ticket: Ticket) -> None:
    if ticket.status not in OPEN_STATUSES:
        raise AssignmentNotAllowed(f"Cannot assign a patient to a ticket that is {ticket.status.value}.")
    if ticket.patient_id is not None:
        raise AssignmentNotAllowed(f"Ticket {ticket.display_code} already has a patient assigned.")


def assign_patient(ticket: Ticket, patient_id: str) -> Ticket:
    check_assignable(ticket)
    ticket.patient_id = patient_id
    return ticket
