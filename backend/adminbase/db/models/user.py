"""
User database model
"""
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Table, Text, false, func, true

from adminbase.db.base import metadata
from adminbase.db.database import Database
from adminbase.db.record import Record


class UserRole(str, PyEnum):
    ADMIN = "admin"
    SUPPORT = "support"
    CLIENT = "client"


PRIVILEGED_ROLES = frozenset({UserRole.ADMIN.value, UserRole.SUPPORT.value})


users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(150), unique=True, nullable=False, index=True),
    Column("display_name", String(255), nullable=True),
    Column("email", String(255), unique=True, nullable=False, index=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default=UserRole.CLIENT.value),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("deactivated_at", DateTime, nullable=True),
    Column("is_approved", Boolean, nullable=False, server_default=true()),
    Column("is_rejected", Boolean, nullable=False, server_default=false()),
    Column("approved_at", DateTime, nullable=True),
    Column("approved_by", Integer, nullable=True),
    Column("email_verified_at", DateTime, nullable=True),
    Column("email_verification_token", String(64), nullable=True),
    Column("email_verification_expires", DateTime, nullable=True),
    Column("timezone", String(64), nullable=False, server_default="UTC"),
    Column("currency", String(8), nullable=False, server_default="USD"),
    Column("preferences", Text, nullable=True),
    Column("password_reset_token", String(64), nullable=True),
    Column("password_reset_expires", DateTime, nullable=True),
    Column("password_changed_at", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)


class User(Record):
    """User account."""

    __table__ = users_table
    fillable = frozenset({
        "username",
        "display_name",
        "email",
        "password_hash",
        "role",
        "is_active",
        "deactivated_at",
        "is_approved",
        "is_rejected",
        "approved_at",
        "approved_by",
        "email_verified_at",
        "email_verification_token",
        "email_verification_expires",
        "timezone",
        "currency",
        "preferences",
        "password_reset_token",
        "password_reset_expires",
        "password_changed_at",
    })
    hidden = frozenset({
        "password_hash",
        "password_reset_token",
        "password_reset_expires",
        "email_verification_token",
        "email_verification_expires",
    })
    json_fields = frozenset({"preferences"})

    @classmethod
    def find_by_identifier(cls, db: Database, identifier: str) -> Optional["User"]:
        """Look a user up by username or (case-insensitively) e-mail."""
        identifier = identifier.strip()
        return (
            cls.query(db)
            .where(lambda q: q.where("username", identifier).or_where("email", identifier.lower()))
            .first()
        )

    @classmethod
    def username_or_email_taken(cls, db: Database, username: str, email: str) -> bool:
        return (
            cls.query(db)
            .where(lambda q: q.where("username", username).or_where("email", email))
            .exists()
        )

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    def __repr__(self) -> str:
        return f"<User {self.username}>"
