# Kestrel Console - Data Models
#
# Client-side shapes for what the backend returns:
#   Session   - the signed-in operator and their bearer token
#   Indicator - an IOC as listed by /api/iocs
#   Feed      - a named, access-tiered grouping of indicators
#   APIKey    - a consumer credential managed from the console
#
# from_dict() parsers accept the backend's snake_case wire names.

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Lifecycle states of the operator session."""

    UNAUTHENTICATED = "unauthenticated"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class IOCType(str, Enum):
    """Indicator kinds the backend accepts, one payload field each."""

    DOMAIN = "domain"
    IP = "ip"
    URL = "url"
    HASH = "hash"
    EMAIL = "email"


class AccessLevel(str, Enum):
    """Distribution tier of a feed, from most to least permissive."""

    FREE = "free"
    PAID = "paid"
    PRIVATE = "private"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "AccessLevel":
        """Parse a tier reported by the backend.

        Missing or empty means ``paid``. Anything unrecognized is shown as
        ``private`` so the console never displays a feed as more open than
        the backend may be treating it.
        """
        if not value:
            return cls.PAID
        try:
            return cls(value.strip().lower())
        except ValueError:
            logger.warning("Unknown access level %r from backend, showing as private", value)
            return cls.PRIVATE


class KeyRole(str, Enum):
    """Role granted to an API key."""

    READER = "reader"
    ADMIN = "admin"


INDICATOR_CATEGORIES = ("Malware", "Phishing", "C2", "Scanning")

SECRET_DISPLAY_CHARS = 20


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class User:
    """Profile returned by login and verify."""

    username: str
    is_admin: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        username = data.get("username")
        if not isinstance(username, str) or not username:
            raise ValueError("user profile is missing a username")
        return cls(username=username, is_admin=bool(data.get("is_admin", False)))


@dataclass
class Session:
    """The process-wide operator session.

    Only SessionManager mutates this; everything else reads it.
    """

    token: Optional[str] = None
    user: Optional[User] = None
    status: SessionStatus = SessionStatus.UNAUTHENTICATED
    epoch: int = 0  # bumped whenever the credential changes

    @property
    def is_authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED

    def check_invariants(self) -> None:
        """Raise ValueError if the session is in an inconsistent state."""
        if (self.user is not None) != self.is_authenticated:
            raise ValueError(
                f"user must be present exactly when authenticated "
                f"(status={self.status.value}, user={self.user})"
            )
        if self.token is None and self.status not in (
            SessionStatus.UNAUTHENTICATED,
            SessionStatus.EXPIRED,
        ):
            raise ValueError(f"status {self.status.value} requires a token")


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Indicator:
    """Indicator of Compromise as listed by the backend.

    ``(value, feed)`` identifies it for deletion; an indicator without a
    feed cannot be deleted.
    """

    value: str
    type: IOCType
    feed: Optional[str] = None
    stix_id: Optional[str] = None
    misp_event_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Indicator":
        return cls(
            value=str(data["value"]),
            type=IOCType(data["type"]),
            feed=data.get("feed") or None,
            stix_id=data.get("stix_id") or None,
            misp_event_id=data.get("misp_event_id") or None,
        )


@dataclass
class IndicatorDraft:
    """Fields collected by the "add IOC" form."""

    type: IOCType
    value: str
    feed: str
    category: str = INDICATOR_CATEGORIES[0]
    comment: str = ""
    access_level: AccessLevel = AccessLevel.PAID

    def __post_init__(self):
        self.type = IOCType(self.type)
        self.access_level = AccessLevel(self.access_level)

    def to_payload(self) -> Dict[str, Any]:
        """Backend body: exactly one value field, selected by ``type``."""
        return {
            self.type.value: self.value,
            "category": self.category,
            "feed": self.feed,
            "comment": self.comment,
            "access_level": self.access_level.value,
        }


@dataclass(frozen=True)
class Feed:
    """Feed aggregate; ``access_level`` is always the backend's value."""

    name: str
    indicator_count: int = 0
    access_level: AccessLevel = AccessLevel.PAID

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feed":
        count = int(data.get("count") or 0)
        if count < 0:
            raise ValueError(f"feed {data.get('name')!r} has negative count {count}")
        return cls(
            name=str(data["name"]),
            indicator_count=count,
            access_level=AccessLevel.from_wire(data.get("access_level")),
        )

    @property
    def endpoint(self) -> str:
        return f"/feeds/{self.name}"


@dataclass(frozen=True)
class APIKey:
    """Consumer API key. The full secret is only handed out on creation."""

    id: str
    name: str
    secret: str = field(repr=False)
    role: KeyRole = KeyRole.READER
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "APIKey":
        created = data.get("created_at")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            secret=str(data.get("key") or ""),
            role=KeyRole(data.get("role") or KeyRole.READER.value),
            created_at=_parse_timestamp(created) if created else None,
        )

    @property
    def masked_secret(self) -> str:
        if len(self.secret) <= SECRET_DISPLAY_CHARS:
            return self.secret
        return self.secret[:SECRET_DISPLAY_CHARS] + "..."


@dataclass(frozen=True)
class DashboardStats:
    total_iocs: int = 0
    total_feeds: int = 0
    total_keys: int = 0


def _parse_timestamp(value: str) -> datetime:
    # RFC 3339 from the backend; "Z" suffix normalised for fromisoformat
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)
