from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.orm import Session

from .errors import OperationFailed, ScopeUnavailable
from .models import QueueSequence, QueueSetting

logger = logging.getLogger(__name__)


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise OperationFailed(f"Ticket numbering is not supported on {dialect_name} databases (use SQLite or PostgreSQL).")
    return insert


class SequenceAllocator:
    """
    Issues ticket numbers per scope (department, service date).

    The counter row is bumped with one atomic upsert inside the caller's
    transaction: the row stays locked until that transaction ends, so
    concurrent callers for the same scope are serialized, and a rollback
    (failed ticket insert, quota exceeded) also rolls the counter back.
    Numbers therefore come out consecutive, starting at 1, with no gaps.
    """

    def next_sequence(self, s: Session, department_id: int, service_date: date) -> int:
        setting = s.get(QueueSetting, department_id)
        if setting is None or not setting.is_active:
            raise ScopeUnavailable(f"No active queue configured for department {department_id}.")

        insert = _dialect_insert(s.get_bind().dialect.name)
        table = QueueSequence.__table__

        stmt = (
            insert(table)
            .values(department_id=department_id, service_date=service_date, last_number=1)
            .on_conflict_do_update(
                index_elements=[table.c.department_id, table.c.service_date],
                set_={"last_number": table.c.last_number + 1},
            )
            .returning(table.c.last_number)
        )
        number = s.execute(stmt).scalar_one()
        logger.debug("Allocated #%s for department %s on %s", number, department_id, service_date)
        return number
