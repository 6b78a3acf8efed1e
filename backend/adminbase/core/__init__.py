"""
Core module exports
"""
from adminbase.core.config import settings
from adminbase.core.security import (
    hash_password,
    verify_password,
    generate_token,
    hash_token,
    device_fingerprint,
)
from adminbase.core.logging import logger, get_logger
from adminbase.core.audit_context import AuditContext

__all__ = [
    "settings",
    "hash_password",
    "verify_password",
    "generate_token",
    "hash_token",
    "device_fingerprint",
    "logger",
    "get_logger",
    "AuditContext",
]
