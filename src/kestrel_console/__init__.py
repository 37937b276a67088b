# Kestrel Console - Main Package
#
# Operator console for the Kestrel threat-intelligence platform:
# sign in, manage IOCs, set feed access tiers, manage API keys.

__version__ = "0.1.0"
__author__ = "Kestrel Console Team"
__description__ = "Administration console for the Kestrel threat-intelligence platform"

from .admin import (
    AccessLevel,
    IOCType,
    KeyRole,
    ResourceOrchestrator,
    SessionManager,
    SessionStatus,
)
from .app import ConsoleApp
from .config import ConsoleConfig, get_config, load_config

__all__ = [
    "__version__",
    "AccessLevel",
    "IOCType",
    "KeyRole",
    "ConsoleApp",
    "ConsoleConfig",
    "ResourceOrchestrator",
    "SessionManager",
    "SessionStatus",
    "get_config",
    "load_config",
]
