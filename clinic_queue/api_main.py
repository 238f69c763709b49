from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, ConfigDict, Field

from .config import configure_logging, load_config
from .engine import QueueOutcome
from .errors import ErrorCode, QueueError
from .models import Ticket, TicketStatus
from .runtime import QueueRuntime, build_runtime
from .seed import seed_base
from .staff_auth import StaffAuth, StaffUser

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

HTTP_STATUS = {
    ErrorCode.TICKET_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.DEPARTMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.PATIENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.DEPARTMENT_BUSY: status.HTTP_409_CONFLICT,
    ErrorCode.ASSIGNMENT_NOT_ALLOWED: status.HTTP_409_CONFLICT,
    ErrorCode.SCOPE_UNAVAILABLE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.QUOTA_EXCEEDED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_SETTINGS: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.COLLABORATOR_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorCode.OPERATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# Auth schemas

class RegisterIn(BaseModel):
    username: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: str
    username: str
    role: str
    is_active: bool


# Queue schemas

class TakeIn(BaseModel):
    department_id: int


class NoteIn(BaseModel):
    note: str | None = None


class AssignPatientIn(BaseModel):
    patient_id: str = Field(..., min_length=1)


class ResetIn(BaseModel):
    department_id: int


class QueueSettingIn(BaseModel):
    prefix: str = Field(..., min_length=1, max_length=5)
    number_width: int = 3
    reset_schedule: str = "manual"
    allow_recall_after_skip: bool = True
    daily_quota: int = 50
    is_active: bool = True


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    department_id: int
    service_date: date
    sequence_number: int
    display_code: str
    status: TicketStatus
    patient_id: str | None
    served_by: str | None
    created_at: datetime
    called_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    skipped_at: datetime | None
    cancelled_at: datetime | None
    called_count: int
    notes: str | None

    @classmethod
    def of(cls, ticket: Ticket) -> TicketOut:
        return cls.model_validate(ticket)


class PublicTicketOut(BaseModel):
    """What the kiosk prints: no internal id, no patient."""
    display_code: str
    department_id: int
    service_date: date
    people_ahead: int


def _error(exc_or_outcome: QueueOutcome | QueueError) -> HTTPException:
    if isinstance(exc_or_outcome, QueueError):
        code, message = exc_or_outcome.code, str(exc_or_outcome)
    else:
        code, message = exc_or_outcome.error or ErrorCode.OPERATION_FAILED, exc_or_outcome.message
    return HTTPException(status_code=HTTP_STATUS[code], detail={"code": code.value, "message": message})


def _ticket_or_error(outcome: QueueOutcome) -> dict[str, Any]:
    if not outcome.ok:
        raise _error(outcome)
    return {"ok": True, "message": outcome.message, "data": TicketOut.of(outcome.ticket)}


def create_app(runtime: QueueRuntime | None = None) -> FastAPI:
    """
    App factory (uvicorn clinic_queue.api_main:create_app --factory).
    The runtime is built once here and shared by every request.
    """
    if runtime is None:
        config = load_config()
        configure_logging(config.log_level)
        runtime = build_runtime(config)
        seed_base(runtime.sessions)

    app = FastAPI(title="Clinic Queue API", version="1.0.0")
    app.state.runtime = runtime
    app.state.auth = StaffAuth(runtime.sessions, runtime.config.jwt_secret, runtime.config.jwt_expire_minutes)

    def get_runtime(request: Request) -> QueueRuntime:
        return request.app.state.runtime

    def get_auth(request: Request) -> StaffAuth:
        return request.app.state.auth

    def get_current_user(token: str = Depends(oauth2_scheme), auth: StaffAuth = Depends(get_auth)) -> StaffUser:
        # extra guard: strip stray spaces / quotes
        u = auth.user_for_token(token.strip().strip('"').strip("'"))
        if u is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
        return u

    def require_admin(user: StaffUser = Depends(get_current_user)) -> StaffUser:
        if not user.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
        return user

    @app.on_event("shutdown")
    def shutdown() -> None:
        runtime.close()

    # AUTH endpoints

    @app.post("/api/auth/register", response_model=dict)
    def register(payload: RegisterIn, auth: StaffAuth = Depends(get_auth)) -> dict[str, Any]:
        # self-registration only ever creates "staff" accounts; admins come from the CLI
        try:
            user_id = auth.register(payload.username, payload.password)
            return {"ok": True, "user_id": user_id}
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/api/auth/login", response_model=TokenOut)
    def login(form: OAuth2PasswordRequestForm = Depends(), auth: StaffAuth = Depends(get_auth)) -> TokenOut:
        u = auth.authenticate(form.username, form.password)
        if not u:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
        return TokenOut(access_token=auth.issue_token(u))

    @app.get("/api/me", response_model=MeOut)
    def me(user: StaffUser = Depends(get_current_user)) -> MeOut:
        return MeOut(id=user.id, username=user.username, role=user.role, is_active=user.is_active)

    # PUBLIC endpoints (kiosk and TV screens, no JWT)

    @app.post("/api/public/take", status_code=status.HTTP_201_CREATED)
    def public_take(payload: TakeIn, rt: QueueRuntime = Depends(get_runtime)) -> dict[str, Any]:
        outcome = rt.engine.take(payload.department_id)
        if not outcome.ok:
            raise _error(outcome)
        t = outcome.ticket
        # tickets before this one in call order; recalled tickets queue after it
        line = rt.store.waiting(t.department_id, t.service_date)
        ahead = next((i for i, w in enumerate(line) if w.id == t.id), 0)
        return {
            "ok": True,
            "message": outcome.message,
            "data": PublicTicketOut(
                display_code=t.display_code,
                department_id=t.department_id,
                service_date=t.service_date,
                people_ahead=ahead,
            ),
        }

    @app.get("/api/public/display")
    def public_display(department_id: int | None = Query(None), rt: QueueRuntime = Depends(get_runtime)) -> dict[str, Any]:
        board = rt.display.board(department_id)
        return {
            "ok": True,
            "data": {
                "departments": [
                    {
                        "department_id": b.department_id,
                        "now_serving": b.now_serving,
                        "status": b.status,
                        "next_up": b.next_up,
                    }
                    for b in board.departments
                ],
                "timestamp": board.generated_at.isoformat(),
            },
        }

    # PROTECTED endpoints (JWT)

    @app.get("/api/queues/today")
    def queues_today(
        department_id: int | None = Query(None),
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        tickets = rt.engine.today_tickets(department_id)
        return {"ok": True, "data": [TicketOut.of(t) for t in tickets], "total": len(tickets)}

    @app.get("/api/queues/stats")
    def queues_stats(
        department_id: int | None = Query(None),
        on: date | None = Query(None, alias="date"),
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        st = rt.engine.stats(department_id, on)
        return {
            "ok": True,
            "data": {
                "date": st.service_date.isoformat(),
                "total": st.total,
                **st.by_status,
                "avg_wait_time": st.avg_wait_minutes,
                "avg_service_time": st.avg_service_minutes,
                "remaining_quota": st.remaining_quota,
            },
        }

    @app.get("/api/queues/current/{department_id}")
    def queues_current(
        department_id: int,
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        current = rt.engine.currently_serving(department_id)
        nxt = rt.store.waiting(department_id, rt.engine.today(), limit=1)
        return {
            "ok": True,
            "data": {
                "current": TicketOut.of(current) if current else None,
                "next": TicketOut.of(nxt[0]) if nxt else None,
            },
        }

    @app.get("/api/queues/{ticket_id}")
    def queues_show(
        ticket_id: str,
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.get(ticket_id))

    @app.patch("/api/queues/{ticket_id}/call")
    def queues_call(ticket_id: str, rt: QueueRuntime = Depends(get_runtime), user: StaffUser = Depends(get_current_user)) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.call(ticket_id, staff_id=user.id))

    @app.patch("/api/queues/{ticket_id}/start")
    def queues_start(ticket_id: str, rt: QueueRuntime = Depends(get_runtime), user: StaffUser = Depends(get_current_user)) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.start(ticket_id, staff_id=user.id))

    @app.patch("/api/queues/{ticket_id}/complete")
    def queues_complete(ticket_id: str, rt: QueueRuntime = Depends(get_runtime), user: StaffUser = Depends(get_current_user)) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.complete(ticket_id))

    @app.patch("/api/queues/{ticket_id}/skip")
    def queues_skip(
        ticket_id: str,
        payload: NoteIn | None = None,
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.skip(ticket_id, payload.note if payload else None))

    @app.patch("/api/queues/{ticket_id}/cancel")
    def queues_cancel(
        ticket_id: str,
        payload: NoteIn | None = None,
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.cancel(ticket_id, payload.note if payload else None))

    @app.patch("/api/queues/{ticket_id}/recall")
    def queues_recall(ticket_id: str, rt: QueueRuntime = Depends(get_runtime), user: StaffUser = Depends(get_current_user)) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.recall(ticket_id))

    @app.patch("/api/queues/{ticket_id}/assign-patient")
    def queues_assign_patient(
        ticket_id: str,
        payload: AssignPatientIn,
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        return _ticket_or_error(rt.engine.assign_patient(ticket_id, payload.patient_id))

    @app.post("/api/queues/reset")
    def queues_reset(
        payload: ResetIn,
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(require_admin),
    ) -> dict[str, Any]:
        outcome = rt.engine.reset(payload.department_id)
        if not outcome.ok:
            raise _error(outcome)
        return {"ok": True, "message": outcome.message, "count": outcome.count}

    @app.get("/api/queue-settings")
    def settings_index(rt: QueueRuntime = Depends(get_runtime), user: StaffUser = Depends(get_current_user)) -> dict[str, Any]:
        try:
            configs = rt.registry.list_all()
        except QueueError as e:
            raise _error(e)
        return {"ok": True, "data": [asdict(c) for c in configs]}

    @app.put("/api/queue-settings/{department_id}")
    def settings_update(
        department_id: int,
        payload: QueueSettingIn,
        rt: QueueRuntime = Depends(get_runtime),
        user: StaffUser = Depends(require_admin),
    ) -> dict[str, Any]:
        try:
            config = rt.registry.update(department_id, **payload.model_dump())
        except QueueError as e:
            raise _error(e)
        return {"ok": True, "message": "Queue settings saved", "data": asdict(config)}

    return app
