from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime

from .clock import Clock
from .store import QueueStore


@dataclass(frozen=True)
class DepartmentBoard:
    department_id: int
    now_serving: str | None
    status: str | None
    next_up: list[str]


@dataclass(frozen=True)
class DisplayBoard:
    departments: list[DepartmentBoard]
    generated_at: datetime


class DisplayFeed:
    """
    Public "now serving / next up" view for the TV screens.
    Only display codes leave this class: no patient ids, no ticket ids.
    Boards are cached for `cache_seconds` (0 disables the cache).
    """

    def __init__(self, store: QueueStore, clock: Clock, next_up: int = 5, cache_seconds: float = 2.0) -> None:
        self.store = store
        self.clock = clock
        self.next_up = next_up
        self.cache_seconds = cache_seconds
        self._cache: dict[int | None, tuple[float, DisplayBoard]] = {}
        self._lock = threading.Lock()

    def _department_board(self, department_id: int) -> DepartmentBoard:
        day = self.clock.now().date()
        current = self.store.current(department_id, day)
        waiting = self.store.waiting(department_id, day, limit=self.next_up)
        return DepartmentBoard(
            department_id=department_id,
            now_serving=current.display_code if current else None,
            status=current.status.value if current else None,
            next_up=[t.display_code for t in waiting],
        )

    def _build(self, department_id: int | None) -> DisplayBoard:
        if department_id is not None:
            ids = [department_id]
        else:
            ids = self.store.departments_on(self.clock.now().date())
        return DisplayBoard(
            departments=[self._department_board(d) for d in ids],
            generated_at=self.clock.now(),
        )

    def board(self, department_id: int | None = None) -> DisplayBoard:
        if self.cache_seconds <= 0:
            return self._build(department_id)

        with self._lock:
            hit = self._cache.get(department_id)
        if hit and time.monotonic() - hit[0] < self.cache_seconds:
            return hit[1]

        # built outside the lock: readers never hold anything writers wait on
        board = self._build(department_id)
        with self._lock:
            self._cache[department_id] = (time.monotonic(), board)
        return board

    def now_serving(self, department_id: int) -> str | None:
        return self.board(department_id).departments[0].now_serving
