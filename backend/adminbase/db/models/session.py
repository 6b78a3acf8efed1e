"""
Session and refresh-token database models
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, func, true

from adminbase.db.base import metadata
from adminbase.db.record import Record


sessions_table = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), unique=True, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)


refresh_tokens_table = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), unique=True, nullable=False),
    Column("expires_at", DateTime, nullable=False, index=True),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("device_fingerprint", String(64), nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)


class AuthSession(Record):
    """Access-token session; only the SHA-256 of the token is stored."""

    __table__ = sessions_table
    fillable = frozenset({"user_id", "token_hash", "expires_at", "created_at"})
    hidden = frozenset({"token_hash"})


class RefreshToken(Record):
    """Long-lived refresh token, bound to a device fingerprint."""

    __table__ = refresh_tokens_table
    fillable = frozenset({"id", "user_id", "token_hash", "expires_at", "is_active", "device_fingerprint"})
    hidden = frozenset({"token_hash"})
