"""
Audit service for AdminBase.
Computes field-level diffs, redacts secrets, and persists audit and
authentication log entries.
"""

import json
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import UUID

from adminbase.core.data_classification import REDACTED, is_sensitive_field, sanitize_for_logging
from adminbase.core.errors import AuditSerializationFailure
from adminbase.core.logging import get_logger
from adminbase.core.security import generate_uuid, utcnow
from adminbase.db.base import format_timestamp, to_storage
from adminbase.db.database import Database
from adminbase.db.models import AuditLog, AuthLog

logger = get_logger(__name__)

UNSERIALIZABLE = "[unserializable]"

Changes = Dict[str, Dict[str, Any]]


# -- diffing ------------------------------------------------------------------


def comparable(value: Any) -> Any:
    """Reduce a value to the form used for change detection.

    Storage round-trips turn booleans into integers and timestamps into
    strings, so both sides are compared in their stored text form.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(to_storage(value))


def values_differ(old_value: Any, new_value: Any) -> bool:
    return comparable(old_value) != comparable(new_value)


def diff_update(before: Mapping[str, Any], new_values: Mapping[str, Any]) -> Changes:
    """Fields whose new value differs from the stored one."""
    changes: Changes = {}
    for key, value in new_values.items():
        old_value = before.get(key)
        if values_differ(old_value, value):
            changes[key] = {"from": old_value, "to": value}
    return changes


def diff_create(data: Mapping[str, Any]) -> Changes:
    return {key: {"from": None, "to": value} for key, value in data.items() if value is not None}


def diff_delete(row: Mapping[str, Any], primary_key: str) -> Changes:
    return {key: {"from": value, "to": None} for key, value in row.items() if key != primary_key}


# -- normalisation ------------------------------------------------------------


def encode_json(value: Any) -> str:
    """Canonical JSON (sorted keys, compact separators)."""
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise AuditSerializationFailure(f"Cannot encode {type(value).__name__} for the audit trail") from exc


def normalize_value(value: Any) -> Any:
    """Render a value the way it is written into ``audit_logs.changes``.

    Datetimes use the stored timestamp form so a change reads the same
    whether it came through ``Record.save`` or a bulk ``QueryPlan.update``.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return normalize_value(value.value)
    try:
        if isinstance(value, tuple):
            value = list(value)
        return encode_json(value)
    except AuditSerializationFailure:
        return UNSERIALIZABLE


def sanitize_changes(changes: Mapping[str, Mapping[str, Any]]) -> Changes:
    """Redact secret-bearing fields and normalise every remaining value."""
    sanitized: Changes = {}
    for field, diff in changes.items():
        if not isinstance(diff, Mapping):
            continue
        if is_sensitive_field(str(field)):
            sanitized[field] = {"from": REDACTED, "to": REDACTED}
        else:
            sanitized[field] = {
                "from": normalize_value(diff.get("from")),
                "to": normalize_value(diff.get("to")),
            }
    return sanitized


def encode_metadata(metadata: Mapping[str, Any]) -> str:
    """Encode entry metadata; keys whose value cannot be encoded get the placeholder."""
    try:
        return encode_json(dict(metadata))
    except AuditSerializationFailure:
        pass

    cleaned = {}
    for key, value in metadata.items():
        try:
            encode_json(value)
            cleaned[str(key)] = value
        except AuditSerializationFailure:
            cleaned[str(key)] = UNSERIALIZABLE
    return encode_json(cleaned)


# -- audit trail --------------------------------------------------------------


class AuditTrail:
    """Writes change entries stamped with the request's actor and metadata."""

    def __init__(self, db: Database):
        self.db = db
        self.context = db.audit_context

    def record(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        changes: Optional[Mapping[str, Mapping[str, Any]]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """Persist one entry; a failure here is logged and never propagates."""
        if not self.context.should_audit(resource_type):
            return None

        try:
            merged_metadata = {**self.context.request_metadata(), **(metadata or {})}
            payload = {
                "id": generate_uuid(),
                "user_id": self.context.actor_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "ip_address": self.context.ip_address,
                "user_agent": self.context.user_agent,
                "changes": encode_json(sanitize_changes(changes)) if changes is not None else None,
                "metadata": encode_metadata(merged_metadata) if merged_metadata else None,
                "created_at": format_timestamp(utcnow()),
            }

            with self.context.suppress(), self.db.transaction():
                return AuditLog.create(self.db, payload)
        except Exception:
            logger.exception("Failed to write audit entry for %s:%s (%s)", resource_type, resource_id, action)
            return None


# -- queries ------------------------------------------------------------------


class AuditService:
    """Service for authentication logging and querying audit history."""

    # Auth log actions
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED = "login_blocked"
    LOGOUT = "logout"
    REFRESH = "refresh"
    REGISTER = "register"

    SECURITY_EVENTS = [LOGIN_FAILED, LOGIN_BLOCKED]

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def log_auth(
        self,
        action: str,
        user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuthLog]:
        """Record an authentication event; failures are logged, never raised."""
        context = self.db.audit_context

        log_msg = f"AUTH: {action} | user:{user_id} | ip:{context.ip_address}"
        if action in self.SECURITY_EVENTS:
            logger.warning(log_msg)
        else:
            logger.info(log_msg)

        try:
            payload = {
                "user_id": user_id,
                "action": action,
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
                "details": encode_metadata(sanitize_for_logging(details)) if details else None,
                "created_at": format_timestamp(self.clock()),
            }

            with self.db.transaction():
                return AuthLog.create(self.db, payload)
        except Exception:
            logger.exception("Failed to write auth log entry (%s)", action)
            return None

    def get_user_activity(self, user_id: int, limit: int = 100) -> List[AuditLog]:
        """Get change history made by a user."""
        return (
            AuditLog.query(self.db)
            .where("user_id", user_id)
            .order_by("created_at", "DESC")
            .limit(limit)
            .get()
        )

    def get_resource_history(self, resource_type: str, resource_id: str, limit: int = 100) -> List[AuditLog]:
        """Get audit history for a specific resource."""
        return (
            AuditLog.query(self.db)
            .where("resource_type", resource_type)
            .where("resource_id", str(resource_id))
            .order_by("created_at", "DESC")
            .limit(limit)
            .get()
        )

    def get_recent_logs(
        self,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AuditLog]:
        """Filtered audit listing for the admin console."""
        filters = filters or {}
        query = AuditLog.query(self.db)

        for column in ("user_id", "action", "resource_type", "resource_id"):
            if filters.get(column) is not None:
                query.where(column, filters[column])
        if filters.get("since") is not None:
            query.where("created_at", ">=", filters["since"])
        if filters.get("until") is not None:
            query.where("created_at", "<=", filters["until"])

        return query.order_by("created_at", "DESC").limit(limit).offset(offset).get()

    def get_user_auth_logs(self, user_id: int, limit: int = 100) -> List[AuthLog]:
        return (
            AuthLog.query(self.db)
            .where("user_id", user_id)
            .order_by("created_at", "DESC")
            .limit(limit)
            .get()
        )

    def count_recent_failures(self, ip_address: str, window_minutes: int) -> int:
        since = self.clock() - timedelta(minutes=window_minutes)
        return (
            AuthLog.query(self.db)
            .where("ip_address", ip_address)
            .where("action", self.LOGIN_FAILED)
            .where("created_at", ">=", format_timestamp(since))
            .count()
        )

    def is_suspicious_ip(self, ip_address: Optional[str], threshold: int = 5, window_minutes: int = 15) -> bool:
        """True once ``threshold`` failed logins came from this IP inside the window."""
        if not ip_address:
            return False
        return self.count_recent_failures(ip_address, window_minutes) >= threshold

    def cleanup_old_logs(self, days: int = 365) -> int:
        """Delete audit and auth log rows older than ``days``."""
        cutoff = format_timestamp(self.clock() - timedelta(days=days))
        removed = AuditLog.query(self.db).where("created_at", "<", cutoff).delete()
        removed += AuthLog.query(self.db).where("created_at", "<", cutoff).delete()
        logger.info("Removed %d audit rows older than %d days", removed, days)
        return removed
