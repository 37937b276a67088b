# Kestrel Console - Admin Module
#
# Session lifecycle and resource orchestration against the Kestrel backend:
#   SessionManager        - login / restore / logout / invalidate
#   ResourceOrchestrator  - indicators, feeds (access tiers), API keys

from .errors import (
    AuthFailure,
    ConsoleError,
    PreconditionFailure,
    TransportFailure,
    ValidationFailure,
)
from .models import (
    AccessLevel,
    APIKey,
    DashboardStats,
    Feed,
    Indicator,
    IndicatorDraft,
    IOCType,
    KeyRole,
    Session,
    SessionStatus,
    User,
)
from .notices import Notice, NoticeChannel, NoticeVariant
from .orchestrator import ResourceKind, ResourceOrchestrator, ViewScope
from .session import SessionManager
from .transport import ApiTransport

__all__ = [
    # Errors
    "ConsoleError",
    "AuthFailure",
    "ValidationFailure",
    "TransportFailure",
    "PreconditionFailure",
    # Models
    "AccessLevel",
    "APIKey",
    "DashboardStats",
    "Feed",
    "Indicator",
    "IndicatorDraft",
    "IOCType",
    "KeyRole",
    "Session",
    "SessionStatus",
    "User",
    # Components
    "ApiTransport",
    "Notice",
    "NoticeChannel",
    "NoticeVariant",
    "ResourceKind",
    "ResourceOrchestrator",
    "SessionManager",
    "ViewScope",
]
