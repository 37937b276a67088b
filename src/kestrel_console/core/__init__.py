# Kestrel Console - Core Module
#
# Shared plumbing used by the session and resource layers:
# - Audit logging of operator actions
# - Persisted session token store

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
)
from .token_store import (
    TOKEN_KEY,
    TokenStore,
    get_token_store,
    set_token_store,
)

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    # Token storage
    "TOKEN_KEY",
    "TokenStore",
    "get_token_store",
    "set_token_store",
]
