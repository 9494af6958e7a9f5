from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from modasim.config import settings

_engine: Optional[Engine] = None

# IMPORTANT:
# - SessionLocal must be callable at import time.
# - We configure its bind lazily in init_engine().
SessionLocal = sessionmaker(autocommit=False, autoflush=False, future=True)


def _apply_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    # NOTE: sqlite3.Connection interface
    # pysqlite's own BEGIN handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


def _sqlite_begin(conn) -> None:
    # Take the write lock up front: a racing advance waits (busy_timeout) and then
    # loses the version CAS instead of failing with "database is locked".
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def configure_sqlite(engine: Engine) -> None:
    """Make SQLite transactions (and nested SAVEPOINTs) behave like a real RDBMS."""
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    event.listen(engine, "begin", _sqlite_begin)


def init_engine() -> None:
    """Initialize the global SQLAlchemy Engine + bind SessionLocal.

    Safe to call multiple times.
    """
    global _engine

    if _engine is not None:
        return

    url = str(settings.DATABASE_URL).strip()

    connect_args: dict = {}

    # SQLite needs special handling for threads.
    is_sqlite = url.startswith("sqlite:")
    if is_sqlite:
        connect_args["check_same_thread"] = False
    else:
        # Day keys are UTC calendar days; keep the DB session in UTC too.
        connect_args["options"] = "-c timezone=UTC"

    _engine = create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

    if is_sqlite:
        configure_sqlite(_engine)

    SessionLocal.configure(bind=_engine)


def bind_engine(engine: Engine) -> None:
    """Use an externally built engine (tests, embedding) instead of DATABASE_URL."""
    global _engine
    _engine = engine
    SessionLocal.configure(bind=engine)


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    assert _engine is not None
    return _engine


def init_schema_check() -> None:
    """Connectivity + schema bootstrap.

    - verify connectivity
    - create tables if missing (create_all is safe on empty DB)
    """
    eng = get_engine()
    with eng.connect() as conn:
        conn.execute(text("SELECT 1"))
        conn.commit()

    from modasim.database.models import Base

    Base.metadata.create_all(bind=eng)
