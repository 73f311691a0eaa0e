from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session

from .schema import Base

# seconds a writer waits for a lock held by another process
BUSY_TIMEOUT = 30


def get_engine(db_path: str | Path) -> Engine:
    db_path_str = str(db_path)
    if db_path_str == ":memory:":
        url = "sqlite+pysqlite:///:memory:"
    else:
        url = f"sqlite+pysqlite:///{db_path_str}"
    engine = create_engine(url, connect_args={"timeout": BUSY_TIMEOUT})
    event.listen(engine, "connect", _on_connect)
    return engine


def _on_connect(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("pragma foreign_keys = on")
    # readers never block the writer, so `cancel` can land mid-run
    cursor.execute("pragma journal_mode = wal")
    cursor.close()


def get_session(engine: Engine) -> Session:
    return Session(engine)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def open_session(db_path: str | Path) -> Session:
    """Create the schema if needed and return a session on the mirror database."""
    engine = get_engine(db_path)
    init_db(engine)
    return get_session(engine)
