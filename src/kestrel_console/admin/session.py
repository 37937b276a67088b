# Kestrel Console - Session Manager
#
# Owns the operator credential from end to end:
#   login            username/password -> bearer token + profile
#   restore_session  verify a persisted token once at startup
#   logout           drop everything locally, no backend call
#   invalidate       401/403 seen anywhere -> expired -> unauthenticated
#
# State machine:
#   unauthenticated -> verifying -> authenticated
#   authenticated -> expired -> unauthenticated
#   unauthenticated -> unauthenticated   (failed login)
#
# The persisted token and Session.token are kept equal except while a
# login or restore is in flight.

import asyncio
import logging
from typing import Callable, List, Optional

from ..core.audit_log import AuditLogger, EventSeverity, EventType
from ..core.token_store import TokenStore
from .errors import (
    AuthFailure,
    ConsoleError,
    PreconditionFailure,
    TransportFailure,
)
from .models import Session, SessionStatus, User
from .transport import ApiTransport

logger = logging.getLogger(__name__)

LOGIN_PATH = "/api/auth/login"
VERIFY_PATH = "/api/auth/verify"

StatusListener = Callable[[SessionStatus, SessionStatus], None]


class SessionManager:
    """Credential lifecycle for the console.

    Args:
        transport: Shared backend transport; its Authorization default is
            set and cleared here and nowhere else.
        token_store: Durable storage for the bearer token.
        audit: Optional audit logger for sign-in/out events.
    """

    def __init__(
        self,
        transport: ApiTransport,
        token_store: TokenStore,
        audit: Optional[AuditLogger] = None,
    ):
        self.transport = transport
        self.token_store = token_store
        self.audit = audit
        self._listeners: List[StatusListener] = []
        self._restore_lock = asyncio.Lock()

        persisted = token_store.load()
        if persisted:
            self._session = Session(token=persisted, status=SessionStatus.VERIFYING)
            self.transport.set_bearer(persisted)
        else:
            self._session = Session()
        self._session.check_invariants()

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def user(self) -> Optional[User]:
        return self._session.user

    @property
    def epoch(self) -> int:
        return self._session.epoch

    @property
    def can_administer_feeds(self) -> bool:
        user = self._session.user
        return self._session.is_authenticated and user is not None and user.is_admin

    def current_credential(self) -> Optional[str]:
        """Token to attach right now, or None when not signed in."""
        if self._session.is_authenticated:
            return self._session.token
        return None

    def add_listener(self, callback: StatusListener) -> None:
        """Call ``callback(old_status, new_status)`` on every transition."""
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> Session:
        """Exchange credentials for a token.

        Raises:
            PreconditionFailure: a stored session is still being verified.
            AuthFailure: the backend rejected the credentials.
            TransportFailure: network error or malformed response.
        """
        if self._session.status == SessionStatus.VERIFYING:
            raise PreconditionFailure("Session verification in progress")
        if not username or not password:
            raise PreconditionFailure(
                "Username and password are required",
                field="username" if not username else "password",
            )

        try:
            data = await self.transport.request(
                "POST",
                LOGIN_PATH,
                json={"username": username, "password": password},
                anonymous=True,
            )
            token, user = _parse_login(data)
        except ConsoleError as exc:
            logger.info("Login failed for %s: %s", username, exc)
            self._audit(
                EventType.USER_LOGIN_FAILED,
                EventSeverity.ALERT,
                f"Login failed for {username}",
                details={"reason": exc.kind, "status_code": exc.status_code},
            )
            raise

        self.token_store.save(token)
        self.transport.set_bearer(token)
        self._transition(
            SessionStatus.AUTHENTICATED, token=token, user=user, new_epoch=True
        )
        self._audit(
            EventType.USER_LOGIN,
            EventSeverity.INFO,
            f"{user.username} signed in",
            details={"is_admin": user.is_admin},
        )
        return self._session

    async def restore_session(self) -> Session:
        """Verify the persisted token. Never raises for backend failures.

        Only does work while the session is ``verifying``; concurrent
        callers wait for the one verification in progress.
        """
        async with self._restore_lock:
            if self._session.status != SessionStatus.VERIFYING:
                return self._session

            token = self._session.token
            epoch = self._session.epoch
            try:
                data = await self.transport.request(
                    "GET", VERIFY_PATH, credential=token
                )
                if not isinstance(data, dict):
                    raise TransportFailure("Malformed verify response")
                try:
                    user = User.from_dict(data)
                except ValueError as exc:
                    raise TransportFailure(f"Malformed verify response: {exc}") from exc
            except ConsoleError as exc:
                if not self._still_verifying(epoch):
                    return self._session
                logger.info("Stored session rejected: %s", exc)
                self._discard_credential()
                self._transition(SessionStatus.UNAUTHENTICATED, new_epoch=True)
                self._audit(
                    EventType.SESSION_RESTORE_FAILED,
                    EventSeverity.ALERT,
                    "Stored session could not be verified",
                    details={"reason": exc.kind, "status_code": exc.status_code},
                )
                return self._session

            if not self._still_verifying(epoch):
                return self._session
            self._transition(SessionStatus.AUTHENTICATED, token=token, user=user)
            self._audit(
                EventType.SESSION_RESTORED,
                EventSeverity.INFO,
                f"Session restored for {user.username}",
            )
            return self._session

    def logout(self) -> None:
        """Drop the session locally. Unconditional, no backend call."""
        operator = self._session.user.username if self._session.user else None
        self._discard_credential()
        self._transition(SessionStatus.UNAUTHENTICATED, new_epoch=True)
        self._audit(
            EventType.USER_LOGOUT,
            EventSeverity.INFO,
            f"{operator or 'operator'} signed out",
            operator=operator,
        )

    def invalidate(self, reason: str = "Session expired") -> bool:
        """Tear down a session the backend no longer accepts.

        Returns False if there was nothing to invalidate.
        """
        if self._session.status == SessionStatus.UNAUTHENTICATED and not self._session.token:
            return False

        operator = self._session.user.username if self._session.user else None
        self._discard_credential()
        self._transition(SessionStatus.EXPIRED, new_epoch=True)
        self._audit(
            EventType.SESSION_EXPIRED,
            EventSeverity.ALERT,
            reason,
            operator=operator,
        )
        self._transition(SessionStatus.UNAUTHENTICATED)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _still_verifying(self, epoch: int) -> bool:
        # logout() is synchronous and can land while verify is awaited
        if self._session.status == SessionStatus.VERIFYING and self._session.epoch == epoch:
            return True
        logger.debug("Session changed during verification, dropping verify result")
        return False

    def _discard_credential(self) -> None:
        self.token_store.clear()
        self.transport.clear_bearer()

    def _transition(
        self,
        status: SessionStatus,
        token: Optional[str] = None,
        user: Optional[User] = None,
        new_epoch: bool = False,
    ) -> None:
        old = self._session.status
        epoch = self._session.epoch + 1 if new_epoch else self._session.epoch
        session = Session(token=token, user=user, status=status, epoch=epoch)
        session.check_invariants()
        self._session = session

        logger.debug("Session %s -> %s (epoch %d)", old.value, status.value, epoch)
        for callback in list(self._listeners):
            callback(old, status)

    def _audit(self, event_type: EventType, severity: EventSeverity, message: str, **kwargs):
        if self.audit is None:
            return
        kwargs.setdefault(
            "operator", self._session.user.username if self._session.user else None
        )
        self.audit.log_event(event_type, severity, message, **kwargs)


def _parse_login(data) -> tuple:
    if not isinstance(data, dict):
        raise TransportFailure("Malformed login response")
    token = data.get("token")
    user_data = data.get("user")
    if not isinstance(token, str) or not token or not isinstance(user_data, dict):
        raise TransportFailure("Malformed login response")
    try:
        return token, User.from_dict(user_data)
    except ValueError as exc:
        raise TransportFailure(f"Malformed login response: {exc}") from exc
