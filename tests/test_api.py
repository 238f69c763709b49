import pytest
from fastapi.testclient import TestClient

from clinic_queue.api_main import create_app
from clinic_queue.staff_auth import StaffAuth

from .conftest import CLOSED, GP


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


@pytest.fixture
def auth(client):
    r = client.post("/api/auth/register", json={"username": "Desk1", "password": "secret-pw"})
    assert r.status_code == 200
    r = client.post("/api/auth/login", data={"username": "desk1", "password": "secret-pw"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def admin(client, runtime):
    StaffAuth(runtime.sessions, runtime.config.jwt_secret).register("head", "admin-pw", role="admin")
    r = client.post("/api/auth/login", data={"username": "head", "password": "admin-pw"})
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def _take(client, department_id=GP):
    r = client.post("/api/public/take", json={"department_id": department_id})
    assert r.status_code == 201, r.text
    return r.json()["data"]


def _today(client, auth):
    return client.get("/api/queues/today", headers=auth).json()["data"]


def test_me(client, auth):
    r = client.get("/api/me", headers=auth)
    assert r.status_code == 200
    assert r.json()["username"] == "desk1"
    assert r.json()["role"] == "staff"


def test_register_twice(client, auth):
    r = client.post("/api/auth/register", json={"username": "desk1", "password": "x"})
    assert r.status_code == 400


def test_wrong_password(client, auth):
    r = client.post("/api/auth/login", data={"username": "desk1", "password": "nope"})
    assert r.status_code == 401


def test_staff_routes_need_a_token(client):
    assert client.get("/api/queues/today").status_code == 401
    assert client.get("/api/queues/today", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_public_take_prints_no_internal_ids(client):
    first = _take(client)
    second = _take(client)
    assert first == {
        "display_code": "A001",
        "department_id": GP,
        "service_date": "2026-03-02",
        "people_ahead": 0,
    }
    assert second["people_ahead"] == 1


def test_people_ahead_leaves_out_recalled_tickets(client, auth):
    _take(client)
    (recalled,) = _today(client, auth)
    client.patch(f"/api/queues/{recalled['id']}/skip", json={"note": "Not here"}, headers=auth)
    r = client.patch(f"/api/queues/{recalled['id']}/recall", headers=auth)
    assert r.json()["data"]["status"] == "waiting"

    assert _take(client)["people_ahead"] == 0
    assert _take(client)["people_ahead"] == 1


def test_public_take_refused(client):
    r = client.post("/api/public/take", json={"department_id": CLOSED})
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "SCOPE_UNAVAILABLE"


def test_staff_flow(client, auth):
    _take(client)
    _take(client)
    first, second = _today(client, auth)
    assert first["display_code"] == "A001"
    assert first["status"] == "waiting"

    r = client.patch(f"/api/queues/{first['id']}/call", headers=auth)
    assert r.status_code == 200
    assert r.json()["data"]["called_count"] == 1
    me = client.get("/api/me", headers=auth).json()
    assert r.json()["data"]["served_by"] == me["id"]

    r = client.patch(f"/api/queues/{first['id']}/start", headers=auth)
    assert r.json()["data"]["status"] == "in_progress"

    client.patch(f"/api/queues/{second['id']}/call", headers=auth)
    r = client.patch(f"/api/queues/{second['id']}/start", headers=auth)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "DEPARTMENT_BUSY"

    r = client.get(f"/api/queues/current/{GP}", headers=auth)
    assert r.json()["data"]["current"]["id"] == first["id"]

    r = client.patch(f"/api/queues/{first['id']}/complete", headers=auth)
    assert r.json()["data"]["status"] == "completed"

    r = client.get("/api/queues/stats", params={"department_id": GP}, headers=auth)
    data = r.json()["data"]
    assert data["total"] == 2
    assert data["completed"] == 1
    assert data["called"] == 1


def test_skip_with_note_and_recall(client, auth):
    _take(client)
    (ticket,) = _today(client, auth)

    r = client.patch(f"/api/queues/{ticket['id']}/skip", json={"note": "Not in the room"}, headers=auth)
    assert r.json()["data"]["status"] == "skipped"
    assert r.json()["data"]["notes"] == "Not in the room"

    r = client.patch(f"/api/queues/{ticket['id']}/recall", headers=auth)
    assert r.json()["data"]["status"] == "waiting"

    r = client.patch(f"/api/queues/{ticket['id']}/cancel", headers=auth)
    assert r.json()["data"]["status"] == "cancelled"
    assert r.json()["data"]["notes"] == "Cancelled"


def test_invalid_transition_is_a_conflict(client, auth):
    _take(client)
    (ticket,) = _today(client, auth)
    r = client.patch(f"/api/queues/{ticket['id']}/complete", headers=auth)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "INVALID_TRANSITION"


def test_assign_patient(client, auth):
    _take(client)
    (ticket,) = _today(client, auth)

    r = client.patch(f"/api/queues/{ticket['id']}/assign-patient", json={"patient_id": "nobody"}, headers=auth)
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "PATIENT_NOT_FOUND"

    r = client.patch(f"/api/queues/{ticket['id']}/assign-patient", json={"patient_id": "patient-1"}, headers=auth)
    assert r.status_code == 200
    assert r.json()["data"]["patient_id"] == "patient-1"

    r = client.patch(f"/api/queues/{ticket['id']}/assign-patient", json={"patient_id": "patient-2"}, headers=auth)
    assert r.json()["detail"]["code"] == "ASSIGNMENT_NOT_ALLOWED"


def test_unknown_ticket(client, auth):
    r = client.get("/api/queues/nope", headers=auth)
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "TICKET_NOT_FOUND"


def test_admin_routes_refuse_staff(client, auth):
    r = client.post("/api/queues/reset", json={"department_id": GP}, headers=auth)
    assert r.status_code == 403
    r = client.put("/api/queue-settings/4", json={"prefix": "L"}, headers=auth)
    assert r.status_code == 403


def test_reset(client, auth, admin):
    _take(client)
    _take(client)
    r = client.post("/api/queues/reset", json={"department_id": GP}, headers=admin)
    assert r.json()["count"] == 2
    assert {t["status"] for t in _today(client, auth)} == {"cancelled"}

    r = client.post("/api/queues/reset", json={"department_id": 999}, headers=admin)
    assert r.status_code == 404


def test_display_board(client, auth):
    _take(client)
    _take(client)
    first = _today(client, auth)[0]
    client.patch(f"/api/queues/{first['id']}/call", headers=auth)

    r = client.get("/api/public/display", params={"department_id": GP})
    (board,) = r.json()["data"]["departments"]
    assert board == {"department_id": GP, "now_serving": "A001", "status": "called", "next_up": ["A002"]}
    assert first["id"] not in r.text


def test_queue_settings(client, admin):
    r = client.put(
        "/api/queue-settings/4",
        json={"prefix": "L", "number_width": 2, "daily_quota": 20, "reset_schedule": "19:00"},
        headers=admin,
    )
    assert r.status_code == 200
    assert r.json()["data"]["prefix"] == "L"

    assert _take(client, 4)["display_code"] == "L01"

    r = client.put("/api/queue-settings/4", json={"prefix": "L", "reset_schedule": "soon"}, headers=admin)
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "INVALID_SETTINGS"

    r = client.put("/api/queue-settings/999", json={"prefix": "X"}, headers=admin)
    assert r.status_code == 404

    r = client.get("/api/queue-settings", headers=admin)
    by_department = {c["department_id"]: c for c in r.json()["data"]}
    assert by_department[4]["reset_schedule"] == "19:00"
