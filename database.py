from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(database_url, connect_args=connect_args)
    if is_sqlite:
        event.listen(eng, "connect", _sqlite_on_connect)
        event.listen(eng, "begin", _sqlite_on_begin)
    return eng


def _sqlite_on_connect(dbapi_conn, _record):
    # BEGIN is emitted by _sqlite_on_begin so SAVEPOINTs always nest inside it.
    dbapi_conn.isolation_level = None
    # Movements, pockets and sub-pockets reference their owners by FK; SQLite
    # only enforces that with the pragma set per connection.
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _sqlite_on_begin(conn):
    conn.exec_driver_sql("BEGIN")


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Open a fresh session, commit on success and always close it."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """
    Run a multi-step mutation on an existing session as one transaction.

    Commits when the block completes, rolls back every flushed change when
    anything inside it raises. The session stays open for the caller.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
