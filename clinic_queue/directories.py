"""
Outbound collaborators of the queue engine.

- Patient service:    does a patient id exist?
- Department service: does a department exist, is it active?

Two implementations each: SQL (local directory tables, the default) and HTTP
(requests, when the service URLs are configured). `Collaborators` bounds
every call with a timeout and is never used inside a DB transaction.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .db import session_scope
from .errors import CollaboratorTimeout, OperationFailed
from .models import Department, Patient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepartmentInfo:
    id: int
    name: str
    is_active: bool


class PatientDirectory(Protocol):
    def exists(self, patient_id: str) -> bool: ...


class DepartmentDirectory(Protocol):
    def get(self, department_id: int) -> DepartmentInfo | None: ...

    def list_all(self) -> list[DepartmentInfo]: ...


# =========================
# SQL (local directory tables)
# =========================
class SqlPatientDirectory:
    def __init__(self, sessions: sessionmaker[Session]) -> None:
        self.sessions = sessions

    def exists(self, patient_id: str) -> bool:
        with session_scope(self.sessions) as s:
            return s.get(Patient, patient_id) is not None


class SqlDepartmentDirectory:
    def __init__(self, sessions: sessionmaker[Session]) -> None:
        self.sessions = sessions

    def get(self, department_id: int) -> DepartmentInfo | None:
        with session_scope(self.sessions) as s:
            d = s.get(Department, department_id)
            return DepartmentInfo(d.id, d.name, d.is_active) if d else None

    def list_all(self) -> list[DepartmentInfo]:
        with session_scope(self.sessions) as s:
            rows = s.execute(select(Department.id, Department.name, Department.is_active).order_by(Department.id)).all()
            return [DepartmentInfo(r.id, r.name, r.is_active) for r in rows]


# =========================
# HTTP (remote services)
# =========================
class _HttpDirectory:
    def __init__(self, base_url: str, timeout: float = 3.0, http: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()

    def _get(self, path: str) -> requests.Response | None:
        """GET on the service; None on 404."""
        try:
            r = self.http.get(f"{self.base_url}{path}", timeout=self.timeout)
        except requests.Timeout as e:
            raise CollaboratorTimeout(f"{self.base_url} did not answer in {self.timeout}s") from e
        except requests.RequestException as e:
            raise OperationFailed(f"{self.base_url} unreachable: {e}") from e

        if r.status_code == 404:
            return None
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            raise OperationFailed(f"{self.base_url} answered {r.status_code}") from e
        return r


class HttpPatientDirectory(_HttpDirectory):
    def exists(self, patient_id: str) -> bool:
        return self._get(f"/api/patients/{patient_id}") is not None


class HttpDepartmentDirectory(_HttpDirectory):
    @staticmethod
    def _info(data: dict[str, Any]) -> DepartmentInfo:
        return DepartmentInfo(int(data["id"]), str(data.get("name") or ""), bool(data.get("is_active", True)))

    def get(self, department_id: int) -> DepartmentInfo | None:
        r = self._get(f"/api/departments/{department_id}")
        if r is None:
            return None
        data = r.json()
        # the department service wraps payloads as {"success": ..., "data": {...}}
        return self._info(data.get("data", data))

    def list_all(self) -> list[DepartmentInfo]:
        r = self._get("/api/departments")
        if r is None:
            return []
        data = r.json()
        items = data.get("data", []) if isinstance(data, dict) else data
        return [self._info(d) for d in items]


# =========================
# Bounded access
# =========================
class Collaborators:
    """Every outbound call goes through here and gives up after `timeout_seconds`."""

    def __init__(
        self,
        patients: PatientDirectory,
        departments: DepartmentDirectory,
        timeout_seconds: float = 3.0,
        max_workers: int = 8,
    ) -> None:
        self.patients = patients
        self.departments = departments
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="collaborator")

    def _bounded(self, what: str, fn: Callable[..., Any], *args: Any) -> Any:
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            future.cancel()
            logger.warning("%s timed out after %ss", what, self.timeout_seconds)
            raise CollaboratorTimeout(f"{what} timed out after {self.timeout_seconds}s") from None

    def patient_exists(self, patient_id: str) -> bool:
        return bool(self._bounded("patient lookup", self.patients.exists, patient_id))

    def department(self, department_id: int) -> DepartmentInfo | None:
        return self._bounded("department lookup", self.departments.get, department_id)

    def is_department_active(self, department_id: int) -> bool:
        d = self.department(department_id)
        return bool(d and d.is_active)

    def list_departments(self) -> list[DepartmentInfo]:
        return list(self._bounded("department listing", self.departments.list_all))

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
