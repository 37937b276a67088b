# Kestrel Console - Operator Audit Log
#
# Append-only structured log of everything an operator does through the
# console: sign-in attempts, session expiry, indicator changes, feed tier
# changes and API key lifecycle. Each entry is one JSON line in
# audit_<date>.log so it can be shipped alongside the backend's own logs.
#
# Passwords and API key secrets never enter this log.

import json
import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of operator events that can be logged."""

    # Session lifecycle
    USER_LOGIN = "user.login"
    USER_LOGIN_FAILED = "user.login.failed"
    USER_LOGOUT = "user.logout"
    SESSION_RESTORED = "session.restored"
    SESSION_RESTORE_FAILED = "session.restore.failed"
    SESSION_EXPIRED = "session.expired"

    # Indicators
    IOC_CREATED = "ioc.created"
    IOC_UPDATED = "ioc.updated"
    IOC_DELETED = "ioc.deleted"

    # Feeds
    FEED_ACCESS_CHANGED = "feed.access.changed"
    FEED_ACCESS_DENIED = "feed.access.denied"

    # API keys
    API_KEY_CREATED = "apikey.created"
    API_KEY_DELETED = "apikey.deleted"


class EventSeverity(str, Enum):
    """
    Severity levels for operator events.

    - INFO: routine action (list, create, delete)
    - ALERT: something the operator should notice (failed login, expiry)
    - CRITICAL: a privileged change (feed tier, admin key)
    """
    INFO = "info"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for console operator events.

    Features:
    - Structured JSON logging through structlog
    - Automatic timestamp and event ID
    - Operator context (username) attached when known
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger("kestrel_console.audit")

    def _setup_file_handler(self):
        """Attach a daily file handler to the audit logger only."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        formatter = logging.Formatter('%(message)s')  # structlog handles formatting
        file_handler.setFormatter(formatter)

        audit_logger = logging.getLogger("kestrel_console.audit")
        for handler in list(audit_logger.handlers):
            audit_logger.removeHandler(handler)
            handler.close()
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        audit_logger.propagate = False

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        operator: Optional[str] = None,
    ) -> str:
        """
        Log an operator event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets)
            operator: Username of the signed-in operator, if any

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.utcnow().isoformat(),
            "details": details or {},
            "operator": operator,
            "client": self._get_client_context(),
        }

        self.logger.info("console_event", **event_data)

        return event_id

    def _get_client_context(self) -> Dict[str, Any]:
        """Get client context (OS user, hostname, platform)."""
        import socket
        import os

        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }

    def read_events(self, limit: int = 100) -> list:
        """Return the most recent events from today's log file, oldest first."""
        if not self.log_file.exists():
            return []
        events = []
        with open(self.log_file, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except ValueError:
                    continue
        return events[-limit:]


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        from ..config import get_config

        _audit_logger = AuditLogger(log_dir=get_config().audit_log_dir)
    return _audit_logger

