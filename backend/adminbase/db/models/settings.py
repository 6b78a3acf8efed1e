"""
SystemSetting database model for admin configuration
"""
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Integer, String, Table, Text, func

from adminbase.db.base import metadata, to_storage
from adminbase.db.database import Database
from adminbase.db.record import Record

_TRUTHY = {"1", "true", "yes", "on"}


system_settings_table = Table(
    "system_settings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), unique=True, nullable=False, index=True),
    Column("value", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)


class SystemSetting(Record):
    """System-wide settings configurable by admin."""

    __table__ = system_settings_table
    fillable = frozenset({"name", "value"})

    @classmethod
    def get_value(cls, db: Database, name: str, default: Any = None) -> Any:
        setting = cls.query(db).where("name", name).first()
        if setting is None or setting.value is None:
            return default
        return setting.value

    @classmethod
    def get_bool(cls, db: Database, name: str, default: bool = False) -> bool:
        value = cls.get_value(db, name)
        if value is None:
            return default
        return str(value).strip().lower() in _TRUTHY

    @classmethod
    def set_value(cls, db: Database, name: str, value: Any) -> "SystemSetting":
        """Create or update a setting; the change is audited like any other write."""
        stored: Optional[str] = None
        if value is not None:
            stored = ("1" if value else "0") if isinstance(value, bool) else str(to_storage(value))
        return cls.upsert(db, {"name": name, "value": stored}, unique_by=["name"])

    def __repr__(self) -> str:
        return f"<SystemSetting {self.name}>"


# Known names:
# - require_email_verifications: "1" | "0"
# - enable_ip_check: "1" | "0"
