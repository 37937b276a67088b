"""
Tests for the operator audit log.

Covers: JSON-lines output, event ids, severity/operator fields and
singleton placement under the configured state directory.
"""

from kestrel_console.core.audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
)


class TestAuditLogger:
    def test_creates_log_dir(self, tmp_path):
        AuditLogger(log_dir=tmp_path / "logs")
        assert (tmp_path / "logs").is_dir()

    def test_event_written_as_json_line(self, audit):
        event_id = audit.log_event(
            EventType.IOC_CREATED,
            EventSeverity.INFO,
            "Added domain evil.test to f1",
            details={"feed": "f1"},
            operator="ops",
        )

        events = audit.read_events()
        assert len(events) == 1
        event = events[0]
        assert event["event_id"] == event_id
        assert event["event_type"] == "ioc.created"
        assert event["severity"] == "info"
        assert event["details"] == {"feed": "f1"}
        assert event["operator"] == "ops"
        assert "hostname" in event["client"]

    def test_events_append_in_order(self, audit):
        audit.log_event(EventType.USER_LOGIN, EventSeverity.INFO, "in")
        audit.log_event(EventType.USER_LOGOUT, EventSeverity.INFO, "out")
        assert [e["message"] for e in audit.read_events()] == ["in", "out"]

    def test_read_limit(self, audit):
        for i in range(5):
            audit.log_event(EventType.USER_LOGIN, EventSeverity.INFO, f"login {i}")
        assert [e["message"] for e in audit.read_events(limit=2)] == ["login 3", "login 4"]

    def test_read_with_no_file(self, tmp_path):
        logger = AuditLogger(log_dir=tmp_path / "empty")
        logger.log_file.unlink(missing_ok=True)
        assert logger.read_events() == []


class TestGlobalLogger:
    def test_default_under_state_dir(self, tmp_path):
        assert get_audit_logger().log_dir == tmp_path / "state" / "audit_logs"

    def test_singleton(self):
        assert get_audit_logger() is get_audit_logger()

    def test_global_logger_writes_events(self):
        get_audit_logger().log_event(
            EventType.FEED_ACCESS_CHANGED,
            EventSeverity.CRITICAL,
            "f1 -> free",
            details={"feed": "f1", "access_level": "free"},
        )
        event = get_audit_logger().read_events()[-1]
        assert event["event_type"] == "feed.access.changed"
        assert event["severity"] == "critical"
