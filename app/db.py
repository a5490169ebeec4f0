from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings, get_settings

settings = get_settings()


def create_db_engine(config: Settings) -> Engine:
    connect_args: dict = {}
    if config.database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": config.sqlite_busy_timeout_ms / 1000}
    return create_engine(config.database_url, future=True, pool_pre_ping=True, connect_args=connect_args)


engine = create_db_engine(settings)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@event.listens_for(Engine, "connect")
def apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
    """Registered on the Engine class, so test engines get the same pragmas."""
    if "sqlite3" not in dbapi_connection.__class__.__module__:
        return

    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute(f"PRAGMA busy_timeout={settings.sqlite_busy_timeout_ms};")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def get_db_session() -> Generator[Session, None, None]:
    with SessionLocal() as session:
        yield session


@contextmanager
def transaction_scope(session: Session) -> Iterator[Session]:
    """Commit everything written inside the block, or nothing at all."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
