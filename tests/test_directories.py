import json
import time

import pytest
import requests

from clinic_queue.directories import (
    Collaborators,
    DepartmentInfo,
    HttpDepartmentDirectory,
    HttpPatientDirectory,
)
from clinic_queue.errors import CollaboratorTimeout, ErrorCode, OperationFailed


def _response(status_code, payload=None):
    r = requests.Response()
    r.status_code = status_code
    r._content = json.dumps(payload if payload is not None else {}).encode()
    r.url = "http://services.local"
    return r


class StubHttp:
    """Stands in for requests.Session: answers from a dict of path -> response."""

    def __init__(self, routes=None, error=None):
        self.routes = routes or {}
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        path = url.split("services.local", 1)[1]
        return self.routes.get(path, _response(404))


def test_patient_exists_over_http():
    http = StubHttp({"/api/patients/p-1": _response(200, {"id": "p-1"})})
    patients = HttpPatientDirectory("http://services.local/", timeout=1.5, http=http)
    assert patients.exists("p-1")
    assert not patients.exists("p-2")
    assert http.calls[0] == ("http://services.local/api/patients/p-1", 1.5)


def test_department_over_http_unwraps_data():
    http = StubHttp(
        {
            "/api/departments/1": _response(200, {"success": True, "data": {"id": 1, "name": "General Practice"}}),
            "/api/departments": _response(
                200,
                {"data": [{"id": 1, "name": "General Practice", "is_active": True}, {"id": 2, "name": "Dental", "is_active": False}]},
            ),
        }
    )
    departments = HttpDepartmentDirectory("http://services.local", http=http)
    assert departments.get(1) == DepartmentInfo(1, "General Practice", True)
    assert departments.get(9) is None
    assert [d.is_active for d in departments.list_all()] == [True, False]


def test_http_timeout_is_a_collaborator_timeout():
    patients = HttpPatientDirectory("http://services.local", http=StubHttp(error=requests.Timeout("slow")))
    with pytest.raises(CollaboratorTimeout) as exc:
        patients.exists("p-1")
    assert exc.value.code == ErrorCode.COLLABORATOR_TIMEOUT


def test_http_errors_are_operation_failures():
    down = HttpPatientDirectory("http://services.local", http=StubHttp(error=requests.ConnectionError("refused")))
    with pytest.raises(OperationFailed):
        down.exists("p-1")

    broken = HttpPatientDirectory("http://services.local", http=StubHttp({"/api/patients/p-1": _response(500)}))
    with pytest.raises(OperationFailed):
        broken.exists("p-1")


class SlowPatients:
    def exists(self, patient_id):
        time.sleep(0.5)
        return True


class Departments:
    def get(self, department_id):
        return DepartmentInfo(department_id, "General Practice", department_id != 3)

    def list_all(self):
        return [self.get(1), self.get(3)]


def test_collaborators_give_up_after_timeout():
    collaborators = Collaborators(SlowPatients(), Departments(), timeout_seconds=0.05)
    try:
        with pytest.raises(CollaboratorTimeout):
            collaborators.patient_exists("p-1")
        assert collaborators.is_department_active(1)
        assert not collaborators.is_department_active(3)
        assert len(collaborators.list_departments()) == 2
    finally:
        collaborators.close()


def test_slow_patient_service_refuses_assignment(runtime, take):
    t = take()
    runtime.collaborators.patients = SlowPatients()
    runtime.collaborators.timeout_seconds = 0.05

    outcome = runtime.engine.assign_patient(t.id, "patient-1")
    assert outcome.error == ErrorCode.COLLABORATOR_TIMEOUT
    assert runtime.engine.get(t.id).ticket.patient_id is None
