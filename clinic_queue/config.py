from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# SQLite file in the project root (next to pyproject.toml)
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "clinic_queue.sqlite"


@dataclass(frozen=True)
class AppConfig:
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    clinic_timezone: str = "UTC"
    collaborator_timeout_seconds: float = 3.0
    display_cache_seconds: float = 2.0
    display_next_up: int = 5
    patient_service_url: str | None = None
    department_service_url: str | None = None
    # In production: set it through the environment
    jwt_secret: str = "CHANGE_ME_DEV_SECRET"
    jwt_expire_minutes: int = 60
    log_level: str = "INFO"


def load_config() -> AppConfig:
    """
    Reads the process configuration once (environment, then `.env`).
    Components never read the environment themselves: they receive this object.
    """
    load_dotenv()
    defaults = AppConfig()
    return AppConfig(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        clinic_timezone=os.getenv("CLINIC_TIMEZONE", defaults.clinic_timezone),
        collaborator_timeout_seconds=float(
            os.getenv("COLLABORATOR_TIMEOUT_SECONDS", str(defaults.collaborator_timeout_seconds))
        ),
        display_cache_seconds=float(os.getenv("DISPLAY_CACHE_SECONDS", str(defaults.display_cache_seconds))),
        display_next_up=int(os.getenv("DISPLAY_NEXT_UP", str(defaults.display_next_up))),
        patient_service_url=os.getenv("PATIENT_SERVICE_URL") or None,
        department_service_url=os.getenv("DEPARTMENT_SERVICE_URL") or None,
        jwt_secret=os.getenv("JWT_SECRET", defaults.jwt_secret),
        jwt_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", str(defaults.jwt_expire_minutes))),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
