"""
Audit and authentication log database models
"""
from sqlalchemy import Column, DateTime, Integer, String, Table, Text, func

from adminbase.core.audit_context import AUDIT_LOG_TABLE
from adminbase.db.base import metadata
from adminbase.db.record import Record


audit_logs_table = Table(
    AUDIT_LOG_TABLE,
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, nullable=True, index=True),
    Column("action", String(20), nullable=False),  # create, update, delete
    Column("resource_type", String(100), nullable=False, index=True),
    Column("resource_id", String(100), nullable=True, index=True),
    Column("ip_address", String(64), nullable=True),
    Column("user_agent", String(500), nullable=True),
    Column("changes", Text, nullable=True),
    Column("metadata", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp(), index=True),
)


auth_logs_table = Table(
    "auth_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=True, index=True),
    Column("action", String(50), nullable=False, index=True),
    Column("ip_address", String(64), nullable=True, index=True),
    Column("user_agent", String(500), nullable=True),
    Column("details", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp(), index=True),
)


class AuditLog(Record):
    """Append-only field-level change record."""

    __table__ = audit_logs_table
    fillable = frozenset({
        "id",
        "user_id",
        "action",
        "resource_type",
        "resource_id",
        "ip_address",
        "user_agent",
        "changes",
        "metadata",
        "created_at",
    })
    json_fields = frozenset({"changes", "metadata"})

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.resource_type}:{self.resource_id}>"


class AuthLog(Record):
    """Authentication event (login, logout, refresh, register...)."""

    __table__ = auth_logs_table
    fillable = frozenset({"user_id", "action", "ip_address", "user_agent", "details", "created_at"})
    json_fields = frozenset({"details"})
