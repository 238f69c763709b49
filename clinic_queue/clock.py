from __future__ import annotations

from datetime import date, datetime
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime:
        """Naive clinic-local wall time."""
        ...


class SystemClock:
    """Wall clock in the clinic time zone; timestamps are stored naive, clinic-local."""

    def __init__(self, timezone_name: str = "UTC") -> None:
        self.tz = ZoneInfo(timezone_name)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)


def service_date(clock: Clock) -> date:
    return clock.now().date()
