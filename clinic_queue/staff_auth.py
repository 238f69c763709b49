"""
Staff accounts of the queue consoles and their bearer tokens.

Two roles:
- "staff": front desk and doctors (ticket actions, today's list, stats)
- "admin": also resets queues and edits queue settings
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import Boolean, DateTime, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from .db import Base, session_scope
from .models import new_uuid

JWT_ALG = "HS256"
ROLES = ("staff", "admin")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class StaffUser(Base):
    __tablename__ = "staff_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="staff", nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class StaffAuth:
    """Registration, login and token checks, bound to one database and one signing key."""

    def __init__(self, sessions: sessionmaker[Session], secret: str, expire_minutes: int = 60) -> None:
        self.sessions = sessions
        self.secret = secret
        self.expire_minutes = expire_minutes

    # =========================
    # Accounts
    # =========================
    def register(self, username: str, password: str, role: str = "staff") -> str:
        username = username.strip().lower()
        if not username or not password:
            raise ValueError("Username and password are required.")
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")

        with session_scope(self.sessions) as s:
            taken = s.execute(select(StaffUser.id).where(StaffUser.username == username)).first()
            if taken:
                raise ValueError("Username already registered.")

            u = StaffUser(username=username, password_hash=pwd_context.hash(password), role=role, is_active=True)
            s.add(u)
            s.flush()
            return u.id

    def authenticate(self, username: str, password: str) -> StaffUser | None:
        with session_scope(self.sessions) as s:
            u = s.execute(
                select(StaffUser).where(StaffUser.username == username.strip().lower())
            ).scalar_one_or_none()
        if u is None or not u.is_active or not pwd_context.verify(password, u.password_hash):
            return None
        return u

    # =========================
    # Tokens
    # =========================
    def issue_token(self, user: StaffUser) -> str:
        # timezone-aware, "exp" is compared against UTC
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "sub": user.id,
            "username": user.username,
            "role": user.role,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=self.expire_minutes)).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALG)

    def user_for_token(self, token: str) -> StaffUser | None:
        """The active account a token was issued to; None for bad, expired or orphan tokens."""
        try:
            user_id = jwt.decode(token, self.secret, algorithms=[JWT_ALG]).get("sub")
        except JWTError:
            return None
        if not user_id:
            return None

        with session_scope(self.sessions) as s:
            u = s.get(StaffUser, user_id)
        return u if u is not None and u.is_active else None
