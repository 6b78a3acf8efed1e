"""
Database models package
"""
from adminbase.db.models.user import User, UserRole, PRIVILEGED_ROLES
from adminbase.db.models.session import AuthSession, RefreshToken
from adminbase.db.models.audit import AuditLog, AuthLog
from adminbase.db.models.settings import SystemSetting

__all__ = [
    # User
    "User",
    "UserRole",
    "PRIVILEGED_ROLES",
    # Sessions
    "AuthSession",
    "RefreshToken",
    # Audit
    "AuditLog",
    "AuthLog",
    # Settings
    "SystemSetting",
]
