# Kestrel Console - Resource Orchestrator
#
# Turns operator intents into backend calls for the three resource kinds
# (indicators, feeds, API keys) and owns the feed access-tier mutation.
#
# Rules every operation follows:
#   - the credential is read from SessionManager at call time
#   - list calls fetch-and-replace; any failure leaves the list empty
#   - mutations never touch a cache directly, they re-list on success
#   - every error becomes a notice; nothing is retried
#   - 401/403 anywhere hands control to SessionManager.invalidate()
#
# Late results are dropped when a newer list call for the same kind was
# issued, when the view that asked for them was closed, or when the
# session changed (logout, expiry, re-login) while they were in flight.

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    Union,
)
from urllib.parse import quote

from ..core.audit_log import AuditLogger, EventSeverity, EventType
from .errors import (
    AuthFailure,
    ConsoleError,
    PreconditionFailure,
    TransportFailure,
)
from .models import (
    AccessLevel,
    APIKey,
    DashboardStats,
    Feed,
    Indicator,
    IndicatorDraft,
    KeyRole,
    SessionStatus,
)
from .notices import NoticeChannel
from .session import SessionManager
from .transport import ApiTransport

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]

# Status codes the backend uses for routes it does not serve yet
NOT_IMPLEMENTED_CODES = (404, 405, 501)


class ResourceKind(str, Enum):
    INDICATORS = "indicators"
    FEEDS = "feeds"
    API_KEYS = "api_keys"


# kind -> (list path, response key, parser, failure notice, label)
_LISTINGS: Dict[ResourceKind, Tuple[str, str, Callable[[Dict[str, Any]], Any], str, str]] = {
    ResourceKind.INDICATORS: ("/api/iocs", "iocs", Indicator.from_dict, "Failed to fetch IOCs", "IOC"),
    ResourceKind.FEEDS: ("/api/feeds", "feeds", Feed.from_dict, "Failed to fetch feeds", "feed"),
    ResourceKind.API_KEYS: ("/api/keys", "keys", APIKey.from_dict, "Failed to fetch API keys", "API key"),
}


class ViewScope:
    """Lifetime of one screen showing a resource kind.

    Results of list calls made under a closed scope are discarded.
    """

    def __init__(self, kind: ResourceKind):
        self.kind = kind
        self.active = True

    def close(self) -> None:
        self.active = False

    def __enter__(self) -> "ViewScope":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class _Ticket:
    """What a list call needs to know about itself when it completes."""

    kind: ResourceKind
    generation: int
    epoch: int
    scope: Optional[ViewScope]


def _deny_all(prompt: str) -> bool:
    logger.info("No confirmation handler configured, declining: %s", prompt)
    return False


class ResourceOrchestrator:
    """CRUD cycles for indicators, feeds and API keys.

    Args:
        session_manager: Source of the credential; sole owner of the session.
        transport: Backend transport shared with the session manager.
        notices: Channel receiving every user-visible outcome.
        confirm: Asked before destructive calls; may be sync or async.
            Without one, destructive calls are declined.
        audit: Optional audit logger for successful mutations.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        transport: ApiTransport,
        notices: NoticeChannel,
        confirm: Optional[ConfirmCallback] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.session_manager = session_manager
        self.transport = transport
        self.notices = notices
        self.confirm = confirm or _deny_all
        self.audit = audit

        self._collections: Dict[ResourceKind, List[Any]] = {kind: [] for kind in ResourceKind}
        self._generations: Dict[ResourceKind, int] = {kind: 0 for kind in ResourceKind}

        session_manager.add_listener(self._on_session_change)

    # ------------------------------------------------------------------
    # Cached collections (snapshots)
    # ------------------------------------------------------------------

    @property
    def indicators(self) -> Tuple[Indicator, ...]:
        return tuple(self._collections[ResourceKind.INDICATORS])

    @property
    def feeds(self) -> Tuple[Feed, ...]:
        return tuple(self._collections[ResourceKind.FEEDS])

    @property
    def api_keys(self) -> Tuple[APIKey, ...]:
        return tuple(self._collections[ResourceKind.API_KEYS])

    def open_view(self, kind: ResourceKind) -> ViewScope:
        return ViewScope(ResourceKind(kind))

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_indicators(
        self, feed: Optional[str] = None, scope: Optional[ViewScope] = None
    ) -> List[Indicator]:
        params = {"feed": feed} if feed else None
        return await self._refresh(ResourceKind.INDICATORS, params=params, scope=scope)

    async def list_feeds(self, scope: Optional[ViewScope] = None) -> List[Feed]:
        return await self._refresh(ResourceKind.FEEDS, scope=scope)

    async def list_api_keys(self, scope: Optional[ViewScope] = None) -> List[APIKey]:
        return await self._refresh(ResourceKind.API_KEYS, scope=scope)

    async def dashboard_stats(self) -> DashboardStats:
        """Refresh all three lists together and report their sizes."""
        iocs, feeds, keys = await asyncio.gather(
            self.list_indicators(),
            self.list_feeds(),
            self.list_api_keys(),
        )
        return DashboardStats(
            total_iocs=len(iocs),
            total_feeds=len(feeds),
            total_keys=len(keys),
        )

    async def _refresh(
        self,
        kind: ResourceKind,
        params: Optional[Dict[str, str]] = None,
        scope: Optional[ViewScope] = None,
    ) -> List[Any]:
        path, key, parser, failure, label = _LISTINGS[kind]
        self._generations[kind] += 1
        ticket = _Ticket(kind, self._generations[kind], self.session_manager.epoch, scope)

        try:
            credential = self._require_credential()
            data = await self.transport.request(
                "GET", path, params=params, credential=credential
            )
            items = _parse_items(data, key, parser, label)
        except ConsoleError as exc:
            if not self._is_current(ticket):
                return list(self._collections[kind])
            self._collections[kind] = []
            self._report_list_failure(exc, failure, label)
            return []

        if not self._is_current(ticket):
            return list(self._collections[kind])
        self._collections[kind] = items
        logger.debug("Loaded %d %s", len(items), kind.value)
        return list(items)

    def _is_current(self, ticket: _Ticket) -> bool:
        if ticket.scope is not None and not ticket.scope.active:
            logger.debug("Discarding %s result for a closed view", ticket.kind.value)
            return False
        if ticket.generation != self._generations[ticket.kind]:
            logger.debug(
                "Discarding stale %s result (generation %d < %d)",
                ticket.kind.value, ticket.generation, self._generations[ticket.kind],
            )
            return False
        if ticket.epoch != self.session_manager.epoch:
            logger.debug("Discarding %s result from an earlier session", ticket.kind.value)
            return False
        return True

    def _report_list_failure(self, exc: ConsoleError, failure: str, label: str) -> None:
        if isinstance(exc, AuthFailure):
            self._handle_auth_failure(exc)
        elif exc.status_code in NOT_IMPLEMENTED_CODES:
            self.notices.info(f"{label} management endpoint not yet implemented")
        else:
            self.notices.error(f"{failure}: {exc.message}", kind=exc.kind)

    # ------------------------------------------------------------------
    # Indicators
    # ------------------------------------------------------------------

    async def create_indicator(self, draft: IndicatorDraft) -> bool:
        """Submit a new indicator, then re-list. No optimistic insert."""
        epoch = self.session_manager.epoch
        try:
            _require(draft.value, "value", "IOC value is required")
            _require(draft.feed, "feed", "Feed name is required")
            await self._send("POST", "/api/ioc", json=draft.to_payload())
        except ConsoleError as exc:
            self._report_mutation_failure(exc, "Failed to add IOC", epoch)
            return False

        self.notices.success("IOC added successfully")
        self._audit(
            EventType.IOC_CREATED,
            EventSeverity.INFO,
            f"Added {draft.type.value} {draft.value} to {draft.feed}",
            details={"feed": draft.feed, "type": draft.type.value, "category": draft.category},
        )
        await self.list_indicators()
        return True

    async def update_indicator(
        self,
        indicator: Indicator,
        new_value: Optional[str] = None,
        category: Optional[str] = None,
        comment: Optional[str] = None,
        access_level: Optional[Union[AccessLevel, str]] = None,
    ) -> bool:
        """Edit an existing indicator in place, then re-list."""
        epoch = self.session_manager.epoch
        try:
            self._require_feed(indicator, "update")
            body: Dict[str, Any] = {"feed": indicator.feed}
            if new_value:
                body["new_value"] = new_value
            if category:
                body["category"] = category
            if comment:
                body["comment"] = comment
            if access_level:
                body["access_level"] = _parse_level(access_level).value
            await self._send(
                "PUT", f"/api/ioc/{quote(indicator.value, safe='')}", json=body
            )
        except ConsoleError as exc:
            self._report_mutation_failure(exc, "Failed to update IOC", epoch)
            return False

        self.notices.success("IOC updated successfully")
        self._audit(
            EventType.IOC_UPDATED,
            EventSeverity.INFO,
            f"Updated {indicator.value} in {indicator.feed}",
            details={"feed": indicator.feed, "fields": sorted(k for k in body if k != "feed")},
        )
        await self.list_indicators()
        return True

    async def delete_indicator(self, indicator: Indicator) -> bool:
        """Delete ``(value, feed)`` after confirmation, then re-list."""
        try:
            self._require_feed(indicator)
        except PreconditionFailure as exc:
            self._report_mutation_failure(exc, "Failed to delete IOC")
            return False

        if not await self._confirm(f"Delete IOC {indicator.value}?"):
            return False

        epoch = self.session_manager.epoch
        try:
            await self._send(
                "DELETE",
                f"/api/ioc/{quote(indicator.value, safe='')}",
                params={"feed": indicator.feed},
            )
        except ConsoleError as exc:
            self._report_mutation_failure(exc, "Failed to delete IOC", epoch)
            return False

        self.notices.success("IOC deleted successfully")
        self._audit(
            EventType.IOC_DELETED,
            EventSeverity.INFO,
            f"Deleted {indicator.value} from {indicator.feed}",
            details={"feed": indicator.feed},
        )
        await self.list_indicators()
        return True

    @staticmethod
    def _require_feed(indicator: Indicator, action: str = "delete") -> None:
        if not indicator.feed:
            raise PreconditionFailure(
                f"Cannot {action} IOC: feed information missing", field="feed"
            )

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    async def set_feed_access_level(
        self, feed_name: str, new_level: Union[AccessLevel, str]
    ) -> Optional[Feed]:
        """Change a feed's tier and return the tier the backend confirms.

        The requested level is never written to the cache; the feed list is
        re-fetched and whatever the backend reports is what gets shown.
        """
        epoch = self.session_manager.epoch
        try:
            _require(feed_name, "feed", "Feed name is required")
            level = _parse_level(new_level)
            if (
                self.session_manager.status == SessionStatus.AUTHENTICATED
                and not self.session_manager.can_administer_feeds
            ):
                self._audit(
                    EventType.FEED_ACCESS_DENIED,
                    EventSeverity.ALERT,
                    f"Non-admin attempted to set {feed_name} to {level.value}",
                    details={"feed": feed_name, "access_level": level.value},
                )
                raise PreconditionFailure(
                    "Changing feed access requires an admin session", field="role"
                )
            await self._send(
                "PUT",
                f"/api/feeds/{quote(feed_name, safe='')}/permissions",
                json={"access_level": level.value},
            )
        except ConsoleError as exc:
            self._report_mutation_failure(exc, "Failed to update feed permissions", epoch)
            return None

        self.notices.success("Feed permissions updated")
        self._audit(
            EventType.FEED_ACCESS_CHANGED,
            EventSeverity.CRITICAL,
            f"Requested {feed_name} access level {level.value}",
            details={"feed": feed_name, "access_level": level.value},
        )
        feeds = await self.list_feeds()
        confirmed = next((f for f in feeds if f.name == feed_name), None)
        if confirmed is not None and confirmed.access_level != level:
            logger.warning(
                "Backend reports %s as %s after requesting %s",
                feed_name, confirmed.access_level.value, level.value,
            )
        return confirmed

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    async def create_api_key(
        self, name: str, role: Union[KeyRole, str] = KeyRole.READER
    ) -> Optional[APIKey]:
        """Create a key. The returned record is the only time the full
        secret is available; listings only carry it for masking."""
        epoch = self.session_manager.epoch
        try:
            _require(name, "name", "Key name is required")
            try:
                key_role = KeyRole(role)
            except ValueError:
                raise PreconditionFailure(
                    f"Role must be one of: {', '.join(r.value for r in KeyRole)}",
                    field="role",
                ) from None
            data = await self._send(
                "POST", "/api/keys", json={"name": name, "role": key_role.value}
            )
        except ConsoleError as exc:
            self._report_mutation_failure(exc, "Failed to create API key", epoch)
            return None

        created = None
        if isinstance(data, dict) and isinstance(data.get("key"), dict):
            try:
                created = APIKey.from_dict(data["key"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Could not parse created API key: %s", exc)

        self.notices.success("API key created successfully")
        self._audit(
            EventType.API_KEY_CREATED,
            EventSeverity.CRITICAL if key_role == KeyRole.ADMIN else EventSeverity.INFO,
            f"Created {key_role.value} API key {name}",
            details={"name": name, "role": key_role.value, "id": created.id if created else None},
        )
        await self.list_api_keys()
        return created

    async def delete_api_key(self, key_id: str) -> bool:
        """Delete a key after confirmation, then re-list."""
        try:
            _require(key_id, "id", "Key id is required")
        except PreconditionFailure as exc:
            self._report_mutation_failure(exc, "Failed to delete API key")
            return False

        if not await self._confirm("Delete this API key? This action cannot be undone."):
            return False

        epoch = self.session_manager.epoch
        try:
            await self._send("DELETE", f"/api/keys/{quote(key_id, safe='')}")
        except ConsoleError as exc:
            self._report_mutation_failure(exc, "Failed to delete API key", epoch)
            return False

        self.notices.success("API key deleted successfully")
        self._audit(
            EventType.API_KEY_DELETED,
            EventSeverity.INFO,
            f"Deleted API key {key_id}",
            details={"id": key_id},
        )
        await self.list_api_keys()
        return True

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _require_credential(self) -> str:
        credential = self.session_manager.current_credential()
        if credential is None:
            raise AuthFailure("Not authenticated")
        return credential

    async def _send(self, method: str, path: str, **kwargs) -> Any:
        credential = self._require_credential()
        return await self.transport.request(method, path, credential=credential, **kwargs)

    async def _confirm(self, prompt: str) -> bool:
        answer = self.confirm(prompt)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    def _report_mutation_failure(
        self, exc: ConsoleError, generic: str, epoch: Optional[int] = None
    ) -> None:
        if isinstance(exc, AuthFailure):
            if epoch is not None and epoch != self.session_manager.epoch:
                # Rejection of a credential that has already been replaced
                logger.debug("Ignoring %s from an earlier session", exc.status_code)
                return
            self._handle_auth_failure(exc)
        elif isinstance(exc, PreconditionFailure):
            self.notices.error(exc.message, kind=exc.kind)
        elif isinstance(exc, TransportFailure) and exc.status_code is None:
            self.notices.error(f"{generic}: {exc.message}", kind=exc.kind)
        else:
            # The backend's own error text verbatim, else the generic failure
            self.notices.error(exc.detail or generic, kind=exc.kind)

    def _handle_auth_failure(self, exc: AuthFailure) -> None:
        if exc.status_code is None:
            # Never reached the network: there was no session to expire
            self.notices.error("Not authenticated: please sign in", kind=exc.kind)
            return
        self.session_manager.invalidate(f"Backend rejected the session ({exc.status_code})")
        self.notices.error("Session expired: please sign in again", kind=exc.kind)

    def _on_session_change(self, old: SessionStatus, new: SessionStatus) -> None:
        if new in (SessionStatus.UNAUTHENTICATED, SessionStatus.EXPIRED):
            for kind in ResourceKind:
                self._collections[kind] = []

    def _audit(self, event_type: EventType, severity: EventSeverity, message: str, **kwargs):
        if self.audit is None:
            return
        user = self.session_manager.user
        self.audit.log_event(
            event_type, severity, message,
            operator=user.username if user else None, **kwargs
        )


def _require(value: Optional[str], field: str, message: str) -> None:
    if not value or not str(value).strip():
        raise PreconditionFailure(message, field=field)


def _parse_level(level: Union[AccessLevel, str]) -> AccessLevel:
    try:
        return AccessLevel(level)
    except ValueError:
        raise PreconditionFailure(
            f"Access level must be one of: {', '.join(a.value for a in AccessLevel)}",
            field="access_level",
        ) from None


def _parse_items(
    data: Any, key: str, parser: Callable[[Dict[str, Any]], Any], label: str
) -> List[Any]:
    """Parse a list response wholesale; one bad record rejects the lot."""
    if not isinstance(data, dict):
        raise TransportFailure(f"Malformed {label} list response")
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise TransportFailure(f"Malformed {label} list response")
    try:
        return [parser(item) for item in raw]
    except (KeyError, TypeError, ValueError) as exc:
        raise TransportFailure(f"Malformed {label} record: {exc}") from exc
