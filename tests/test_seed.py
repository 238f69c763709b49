from sqlalchemy import func, select

from clinic_queue.config import AppConfig
from clinic_queue.db import session_scope
from clinic_queue.models import Department, QueueSetting
from clinic_queue.runtime import build_runtime
from clinic_queue.seed import DEPARTMENTS, seed_base


def test_seed_is_idempotent_and_ready_to_take(tmp_path, clock):
    rt = build_runtime(AppConfig(database_url=f"sqlite:///{tmp_path / 'seed.sqlite'}"), clock=clock)
    try:
        seed_base(rt.sessions)
        seed_base(rt.sessions)

        with session_scope(rt.sessions) as s:
            assert s.execute(select(func.count(Department.id))).scalar_one() == len(DEPARTMENTS)
            assert s.execute(select(func.count()).select_from(QueueSetting)).scalar_one() == len(DEPARTMENTS)
            gp_id = s.execute(select(Department.id).where(Department.code == "POLI-001")).scalar_one()

        outcome = rt.engine.take(gp_id)
        assert outcome.ok
        assert outcome.ticket.display_code == "A001"
    finally:
        rt.close()
