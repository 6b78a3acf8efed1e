"""
Tests for the audit context, trail and query service.
"""

import json
from datetime import datetime, timedelta, timezone

from adminbase.core.audit_context import AuditContext
from adminbase.core.security import utcnow
from adminbase.db.models import AuditLog, AuthLog
from adminbase.services.audit import (
    UNSERIALIZABLE,
    AuditService,
    AuditTrail,
    normalize_value,
    sanitize_changes,
    values_differ,
)

from conftest import Note


class TestSanitization:
    """Test redaction and value normalisation."""

    def test_sensitive_fragments_redacted_case_insensitively(self):
        """Test any field containing a secret fragment is redacted."""
        changes = sanitize_changes({
            "Password_Hash": {"from": "a", "to": "b"},
            "email_verification_expires": {"from": None, "to": "2026-01-01"},
            "refresh_count": {"from": 1, "to": 2},
            "title": {"from": "a", "to": "b"},
        })
        assert changes["Password_Hash"] == {"from": "[redacted]", "to": "[redacted]"}
        assert changes["email_verification_expires"] == {"from": "[redacted]", "to": "[redacted]"}
        assert changes["refresh_count"] == {"from": "[redacted]", "to": "[redacted]"}
        assert changes["title"] == {"from": "a", "to": "b"}

    def test_normalize_datetime_to_stored_form(self):
        """Test datetimes render as naive UTC timestamps."""
        moment = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
        assert normalize_value(moment) == "2026-03-01 08:30:00"
        assert normalize_value(moment.astimezone(timezone(timedelta(hours=2)))) == "2026-03-01 08:30:00"
        assert normalize_value(moment.date()) == "2026-03-01"

    def test_timestamps_match_across_write_paths(self, db):
        """Test save() and a bulk update record the same timestamp text."""
        moment = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
        first = Note.create(db, {"title": "a"})
        second = Note.create(db, {"title": "b"})

        first.body = moment
        first.save()
        Note.query(db).where(second.id).update({"body": moment})

        entries = AuditLog.query(db).where("action", "update").get()
        assert len(entries) == 2
        assert {json.loads(entry.changes)["body"]["to"] for entry in entries} == {"2026-03-01 08:30:00"}

    def test_normalize_structures_to_canonical_json(self):
        """Test dicts are encoded with sorted keys."""
        assert normalize_value({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
        assert normalize_value((1, 2)) == "[1,2]"

    def test_normalize_scalars_unchanged(self):
        assert normalize_value(5) == 5
        assert normalize_value("x") == "x"
        assert normalize_value(None) is None

    def test_unencodable_value(self):
        """Test values JSON cannot encode degrade to a marker."""
        assert normalize_value(object()) == UNSERIALIZABLE
        assert normalize_value({"k": object()}) == UNSERIALIZABLE

    def test_values_differ_across_storage_types(self):
        """Test booleans compare equal to their stored integers."""
        assert not values_differ(True, 1)
        assert not values_differ(1, "1")
        assert values_differ(None, "")
        assert values_differ("new", "sent")


class TestAuditContext:
    """Test the request-scoped context."""

    def test_audit_table_always_ignored(self):
        """Test the audit table can never audit itself."""
        context = AuditContext(ignored_resource_types=frozenset({"other"}))
        assert not context.should_audit("audit_logs")
        assert not context.should_audit("other")
        assert context.should_audit("notes")

    def test_suppress_restores_flag(self):
        """Test suppression is cleared even when the block raises."""
        context = AuditContext()
        try:
            with context.suppress():
                assert not context.should_audit("notes")
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert context.suppressed is False
        assert context.should_audit("notes")

    def test_request_metadata_drops_empty_values(self):
        context = AuditContext()
        context.set_request_meta(method="POST", path="/notes", query="", ip_address="10.0.0.1")
        context.set_actor(3, "admin")
        assert context.request_metadata() == {"method": "POST", "path": "/notes", "actor_role": "admin"}

    def test_contexts_are_independent(self):
        """Test two requests never share actor state."""
        first, second = AuditContext(), AuditContext()
        first.set_actor(1, "admin")
        assert second.actor_id is None


class TestAuditTrail:
    """Test writing audit entries."""

    def test_entry_attributed_to_actor_and_request(self, db):
        """Test actor, ip, user agent and metadata are stamped on entries."""
        db.audit_context.set_request_meta(method="PATCH", path="/notes/1", ip_address="10.0.0.9", user_agent="pytest")
        db.audit_context.set_actor(42, "support")

        note = Note.create(db, {"title": "hello"})

        entry = AuditLog.query(db).where("resource_id", str(note.id)).first()
        assert entry.user_id == 42
        assert entry.ip_address == "10.0.0.9"
        assert entry.user_agent == "pytest"
        assert json.loads(entry.metadata) == {"method": "PATCH", "path": "/notes/1", "actor_role": "support"}

    def test_caller_metadata_wins(self, db):
        """Test caller metadata overrides request metadata on key clashes."""
        db.audit_context.set_request_meta(method="PATCH", path="/x")
        AuditTrail(db).record("update", "notes", "1", {"title": {"from": "a", "to": "b"}}, {"path": "/override", "bulk": True})

        entry = AuditLog.query(db).first()
        assert json.loads(entry.metadata) == {"method": "PATCH", "path": "/override", "bulk": True}

    def test_unencodable_metadata_degrades_to_marker(self, db):
        """Test metadata JSON cannot encode is written with a placeholder, not raised."""
        db.audit_context.set_request_meta(method="PATCH")
        entry = AuditTrail(db).record(
            "update", "notes", "1", {"title": {"from": "a", "to": "b"}}, {"obj": object(), "reason": "cleanup"}
        )

        assert entry is not None
        stored = AuditLog.query(db).first()
        assert json.loads(stored.metadata) == {"method": "PATCH", "obj": UNSERIALIZABLE, "reason": "cleanup"}
        assert json.loads(stored.changes) == {"title": {"from": "a", "to": "b"}}

    def test_disabled_context_writes_nothing(self, db):
        db.audit_context.enabled = False
        Note.create(db, {"title": "hello"})
        assert AuditLog.query(db).count() == 0

    def test_ignored_resource_type(self, db):
        db.audit_context.ignore(["notes"])
        Note.create(db, {"title": "hello"})
        assert AuditLog.query(db).count() == 0

    def test_suppression_cleared_after_write(self, db):
        """Test the re-entrancy flag is reset after each entry."""
        Note.create(db, {"title": "a"})
        assert db.audit_context.suppressed is False
        Note.create(db, {"title": "b"})
        assert AuditLog.query(db).count() == 2

    def test_audit_entries_are_not_audited(self, db):
        """Test writing an entry never produces an entry about itself."""
        Note.create(db, {"title": "a"})
        assert AuditLog.query(db).where("resource_type", "audit_logs").count() == 0


class TestAuditService:
    """Test auth logging and audit queries."""

    def test_log_auth_sanitizes_details(self, db):
        """Test secrets never reach the auth log."""
        AuditService(db).log_auth("login_failed", details={"identifier": "alice@example.com", "password": "hunter2"})
        entry = AuthLog.query(db).first()
        details = json.loads(entry.details)
        assert details["password"] == "[redacted]"
        assert details["identifier"] != "alice@example.com"

    def test_log_auth_with_unencodable_details(self, db):
        entry = AuditService(db).log_auth("logout", details={"client": object()})
        assert entry is not None
        assert json.loads(AuthLog.query(db).first().details) == {"client": UNSERIALIZABLE}

    def test_resource_history_and_user_activity(self, db):
        db.audit_context.set_actor(7)
        note = Note.create(db, {"title": "a"})
        note.title = "b"
        note.save()

        service = AuditService(db)
        assert len(service.get_resource_history("notes", str(note.id))) == 2
        assert len(service.get_user_activity(7)) == 2
        assert service.get_user_activity(8) == []

    def test_recent_logs_filters(self, db):
        note = Note.create(db, {"title": "a"})
        note.delete()

        service = AuditService(db)
        assert [log.action for log in service.get_recent_logs({"action": "delete"})] == ["delete"]
        assert len(service.get_recent_logs({"resource_type": "notes"})) == 2

    def test_suspicious_ip_threshold(self, db):
        """Test an IP becomes suspicious at the failure threshold."""
        db.audit_context.set_request_meta(ip_address="203.0.113.5")
        service = AuditService(db)
        for _ in range(2):
            service.log_auth("login_failed")
        assert not service.is_suspicious_ip("203.0.113.5", threshold=3)
        service.log_auth("login_failed")
        assert service.is_suspicious_ip("203.0.113.5", threshold=3)
        assert not service.is_suspicious_ip("198.51.100.1", threshold=3)

    def test_failures_outside_window_ignored(self, db):
        """Test old failures do not count toward the threshold."""
        db.audit_context.set_request_meta(ip_address="203.0.113.5")
        past = AuditService(db, clock=lambda: utcnow() - timedelta(hours=2))
        for _ in range(5):
            past.log_auth("login_failed")
        assert not AuditService(db).is_suspicious_ip("203.0.113.5", threshold=5, window_minutes=15)

    def test_cleanup_old_logs(self, db):
        Note.create(db, {"title": "a"})
        AuditService(db).log_auth("logout")

        future = AuditService(db, clock=lambda: utcnow() + timedelta(days=400))
        assert future.cleanup_old_logs(365) == 2
        assert AuditLog.query(db).count() == 0
        assert AuthLog.query(db).count() == 0
