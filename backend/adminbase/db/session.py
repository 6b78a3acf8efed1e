"""
Database engine configuration and the per-request handle dependency
"""
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from adminbase.core.audit_context import AuditContext
from adminbase.core.config import settings
from adminbase.db.database import Database


def configure_sqlite(engine: Engine) -> Engine:
    """Let pysqlite honour SAVEPOINTs by handing transaction control to SQLAlchemy."""

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(url: str, echo: bool = False, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        return configure_sqlite(create_engine(url, echo=echo, **kwargs))
    return create_engine(url, echo=echo, pool_pre_ping=True, **kwargs)


# Create engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)


def get_db() -> Generator[Database, None, None]:
    """Dependency for a request-owned database handle."""
    db = Database(engine.connect(), AuditContext.from_settings(settings))
    try:
        yield db
    finally:
        db.close()
