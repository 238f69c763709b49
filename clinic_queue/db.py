from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Base ORM for every model."""
    pass


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Builds the single engine of the process (connection pool included).
    On SQLite: WAL journal so display reads never block writers, and a busy
    timeout so concurrent kiosks wait for the write lock instead of failing.
    """
    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

    engine = create_engine(
        database_url,
        echo=echo,              # True to see the queries
        future=True,
        connect_args=connect_args,
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys = ON")
            if ":memory:" not in database_url:
                cur.execute("PRAGMA journal_mode = WAL")
            cur.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


def init_db(engine: Engine) -> None:
    """Creates the tables if they do not exist."""
    # registers every mapped table on Base.metadata
    from . import models, staff_auth  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(sessions: sessionmaker[Session]) -> Iterator[Session]:
    """
    Context manager for one unit of work:
    - commit if everything is fine
    - rollback on exceptions
    - always close
    """
    session: Session = sessions()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
