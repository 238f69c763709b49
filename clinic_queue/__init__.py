"""
Patient queue engine of the clinic backend.

Structure:
- db.py                : SQLAlchemy engine and sessions
- models.py            : ORM models and ticket status
- sequence.py          : per department/day ticket numbers
- state_machine.py     : ticket lifecycle
- store.py             : ticket storage and queries
- settings_registry.py : per-department queue configuration
- directories.py       : patient / department services (SQL or HTTP)
- engine.py            : queue use cases (take, call, start, ..., reset)
- display.py           : public "now serving" board
- runtime.py           : builds everything once from the config
- staff_auth.py        : staff accounts, roles and JWT
- api_main.py          : FastAPI adapter
- cli.py               : front desk / admin / cron CLI
- seed.py              : demo departments and queue settings
"""
