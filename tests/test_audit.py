"""
tests/test_audit.py — Audit trail events
========================================

Covers: message format per event kind, structured fields, actor
resolution (explicit, bound context, system sentinel), JSON and file
sinks, and that a failing sink never propagates.
"""
import json
import logging

import pytest

from starter.auth.context import SYSTEM_ACTOR, acting_as, current_actor
from starter.telemetry import audit


@pytest.fixture
def audit_records(caplog):
    caplog.set_level(logging.INFO, logger=audit.AUDIT_LOGGER_NAME)
    return caplog


def _only(caplog) -> logging.LogRecord:
    records = [r for r in caplog.records if r.name == audit.AUDIT_LOGGER_NAME]
    assert len(records) == 1
    return records[0]


# ═══════════════════════════════════════════════════════════════════════════
# Actor resolution
# ═══════════════════════════════════════════════════════════════════════════

class TestActorContext:
    def test_defaults_to_system(self):
        assert current_actor() == SYSTEM_ACTOR == "system"

    def test_binding_is_scoped(self):
        with acting_as("alice"):
            assert current_actor() == "alice"
            with acting_as("bob"):
                assert current_actor() == "bob"
            assert current_actor() == "alice"
        assert current_actor() == "system"

    def test_none_binding_falls_back_to_system(self):
        with acting_as(None):
            assert current_actor() == "system"


# ═══════════════════════════════════════════════════════════════════════════
# Events
# ═══════════════════════════════════════════════════════════════════════════

class TestAuditEvents:
    def test_user_created_without_context_is_system(self, audit_records):
        audit.log_user_created("id-1", "jdoe")
        record = _only(audit_records)
        assert record.levelno == logging.INFO
        assert record.getMessage() == "USER_CREATED: user_id=id-1, username=jdoe, created_by=system"
        assert record.event == "USER_CREATED"
        assert record.actor == "system"

    def test_user_updated_uses_bound_actor(self, audit_records):
        with acting_as("admin"):
            audit.log_user_updated("id-2", "jdoe")
        record = _only(audit_records)
        assert record.getMessage() == "USER_UPDATED: user_id=id-2, username=jdoe, updated_by=admin"
        assert record.user_id == "id-2"
        assert record.username == "jdoe"

    def test_explicit_actor_wins_over_context(self, audit_records):
        with acting_as("admin"):
            audit.log_user_deleted("id-3", "jdoe", actor="operator")
        record = _only(audit_records)
        assert record.getMessage().endswith("deleted_by=operator")

    def test_password_changed(self, audit_records):
        with acting_as("jdoe"):
            audit.log_password_changed("id-4", "jdoe")
        record = _only(audit_records)
        assert record.getMessage() == "PASSWORD_CHANGED: user_id=id-4, username=jdoe, changed_by=jdoe"

    def test_login_success(self, audit_records):
        audit.log_login("jdoe")
        record = _only(audit_records)
        assert record.levelno == logging.INFO
        assert record.getMessage() == "LOGIN_SUCCESS: username=jdoe"

    def test_login_failed_is_warning_with_reason(self, audit_records):
        audit.log_login_failed("jdoe", "invalid credentials")
        record = _only(audit_records)
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "LOGIN_FAILED: username=jdoe, reason=invalid credentials"
        assert record.reason == "invalid credentials"

    def test_none_identifiers_are_recorded(self, audit_records):
        audit.log_user_created(None, None)
        assert "user_id=None, username=None" in _only(audit_records).getMessage()


# ═══════════════════════════════════════════════════════════════════════════
# Failure isolation
# ═══════════════════════════════════════════════════════════════════════════

class TestAuditNeverRaises:
    def test_broken_sink_is_swallowed(self, monkeypatch, caplog):
        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(audit.audit_logger, "log", boom)
        caplog.set_level(logging.DEBUG, logger="starter.telemetry")

        audit.log_user_created("id-5", "jdoe")
        audit.log_user_updated("id-5", "jdoe")
        audit.log_user_deleted("id-5", "jdoe")
        audit.log_login("jdoe")
        audit.log_login_failed("jdoe", "invalid credentials")
        audit.log_password_changed("id-5", "jdoe")

        failures = [r for r in caplog.records if r.name == "starter.telemetry"]
        assert len(failures) == 6
        assert all(r.levelno == logging.DEBUG for r in failures)
        assert "disk full" in failures[0].getMessage()


# ═══════════════════════════════════════════════════════════════════════════
# Sinks
# ═══════════════════════════════════════════════════════════════════════════

class TestAuditSinks:
    def test_json_formatter_emits_fields_as_top_level_keys(self, monkeypatch, audit_records):
        from starter import main

        monkeypatch.setattr(main.settings, "log_format", "json")
        formatter = main._make_formatter()

        with acting_as("root"):
            audit.log_user_created("id-6", "jdoe")
        payload = json.loads(formatter.format(_only(audit_records)))

        assert payload["event"] == "USER_CREATED"
        assert payload["user_id"] == "id-6"
        assert payload["username"] == "jdoe"
        assert payload["created_by"] == payload["actor"] == "root"
        assert payload["level"] == "INFO"
        assert payload["name"] == audit.AUDIT_LOGGER_NAME
        assert "timestamp" in payload
        assert "levelname" not in payload and "asctime" not in payload

    def test_text_formatter_keeps_message(self, monkeypatch, audit_records):
        from starter import main

        monkeypatch.setattr(main.settings, "log_format", "text")
        audit.log_login("jdoe")
        line = main._make_formatter().format(_only(audit_records))
        assert line.endswith("starter.audit: LOGIN_SUCCESS: username=jdoe")

    def test_audit_file_sink(self, monkeypatch, tmp_path):
        from starter import main

        path = tmp_path / "audit.log"
        monkeypatch.setattr(main.settings, "audit_log_path", str(path))
        monkeypatch.setattr(main.settings, "log_format", "json")

        root = logging.getLogger()
        root_before = list(root.handlers)
        audit_before = list(audit.audit_logger.handlers)
        try:
            main._configure_logging()
            audit.log_login_failed("jdoe", "invalid credentials")
        finally:
            for handler in set(root.handlers) - set(root_before):
                root.removeHandler(handler)
            for handler in set(audit.audit_logger.handlers) - set(audit_before):
                audit.audit_logger.removeHandler(handler)
                handler.close()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        payload = json.loads(lines[0])
        assert payload["event"] == "LOGIN_FAILED"
        assert payload["reason"] == "invalid credentials"
        assert payload["level"] == "WARNING"
