from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from remindly.config import get_settings


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _install_sqlite_pragmas(engine: Engine, *, busy_timeout_ms: int) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)};")
            # Installment and subscription rows cascade with their parent only when this is on.
            cursor.execute("PRAGMA foreign_keys=ON;")
        finally:
            cursor.close()


def build_engine(database_url: str, *, busy_timeout_ms: int = 5000) -> Engine:
    if not _is_sqlite(database_url):
        return create_engine(database_url, future=True, pool_pre_ping=True)

    engine = create_engine(
        database_url,
        future=True,
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000},
    )
    _install_sqlite_pragmas(engine, busy_timeout_ms=busy_timeout_ms)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


settings = get_settings()
engine = build_engine(settings.database_url, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
SessionLocal = build_session_factory(engine)


def get_db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
