from __future__ import annotations

import enum


class ErrorCode(enum.Enum):
    SCOPE_UNAVAILABLE = "SCOPE_UNAVAILABLE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DEPARTMENT_BUSY = "DEPARTMENT_BUSY"
    ASSIGNMENT_NOT_ALLOWED = "ASSIGNMENT_NOT_ALLOWED"
    PATIENT_NOT_FOUND = "PATIENT_NOT_FOUND"
    DEPARTMENT_NOT_FOUND = "DEPARTMENT_NOT_FOUND"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INVALID_SETTINGS = "INVALID_SETTINGS"
    COLLABORATOR_TIMEOUT = "COLLABORATOR_TIMEOUT"
    OPERATION_FAILED = "OPERATION_FAILED"


class QueueError(Exception):
    code = ErrorCode.OPERATION_FAILED


class ScopeUnavailable(QueueError):
    code = ErrorCode.SCOPE_UNAVAILABLE


class QuotaExceeded(QueueError):
    code = ErrorCode.QUOTA_EXCEEDED


class InvalidTransition(QueueError):
    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, current: str, action: str, message: str | None = None) -> None:
        self.current = current
        self.action = action
        super().__init__(message or f"Cannot {action} a ticket that is {current}.")


class ConcurrencyConflict(InvalidTransition):
    """The ticket changed under us: re-fetch it before deciding what to do."""
    code = ErrorCode.CONCURRENCY_CONFLICT

    def __init__(self, current: str, action: str) -> None:
        super().__init__(current, action, f"Ticket changed concurrently while trying to {action} it (was {current}).")


class DepartmentBusy(QueueError):
    code = ErrorCode.DEPARTMENT_BUSY


class AssignmentNotAllowed(QueueError):
    code = ErrorCode.ASSIGNMENT_NOT_ALLOWED


class PatientNotFound(QueueError):
    code = ErrorCode.PATIENT_NOT_FOUND


class DepartmentNotFound(QueueError):
    code = ErrorCode.DEPARTMENT_NOT_FOUND


class TicketNotFound(QueueError):
    code = ErrorCode.TICKET_NOT_FOUND


class InvalidSettings(QueueError):
    code = ErrorCode.INVALID_SETTINGS


class CollaboratorTimeout(QueueError):
    code = ErrorCode.COLLABORATOR_TIMEOUT


class OperationFailed(QueueError):
    code = ErrorCode.OPERATION_FAILED
