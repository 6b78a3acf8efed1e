"""
Services package
"""
from adminbase.services.audit import AuditTrail, AuditService
from adminbase.services.session_store import SessionStore, RefreshTokenStore
from adminbase.services.auth import AuthenticationService, AuthResult, Actor

__all__ = [
    "AuditTrail",
    "AuditService",
    "SessionStore",
    "RefreshTokenStore",
    "AuthenticationService",
    "AuthResult",
    "Actor",
]
