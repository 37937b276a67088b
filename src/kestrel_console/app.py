# Kestrel Console - Application Wiring
#
# Builds one console instance: config -> token store -> transport ->
# SessionManager -> ResourceOrchestrator, all sharing one NoticeChannel.
# Front ends (the CLI today) go through ConsoleApp rather than wiring
# the pieces themselves.

import logging
from typing import Optional

import httpx

from .admin.notices import NoticeChannel
from .admin.orchestrator import ConfirmCallback, ResourceOrchestrator
from .admin.session import SessionManager
from .admin.transport import ApiTransport
from .config import ConsoleConfig, get_config
from .core.audit_log import AuditLogger, get_audit_logger
from .core.token_store import TokenStore, get_token_store

logger = logging.getLogger(__name__)


class ConsoleApp:
    """One operator console bound to one backend.

    The token store and audit logger default to the process-wide ones,
    which live under ``get_config().state_dir``; call ``set_config`` first
    when passing a non-default config.

    Usage::

        async with ConsoleApp(config) as app:
            await app.start()
            if app.session.status is SessionStatus.AUTHENTICATED:
                await app.resources.list_feeds()
    """

    def __init__(
        self,
        config: Optional[ConsoleConfig] = None,
        confirm: Optional[ConfirmCallback] = None,
        token_store: Optional[TokenStore] = None,
        audit: Optional[AuditLogger] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or get_config()
        self.notices = NoticeChannel()
        self.audit = audit or get_audit_logger()
        self.token_store = token_store or get_token_store()
        self.transport = ApiTransport(
            self.config.api_url,
            timeout=self.config.timeout,
            transport=http_transport,
        )
        self.session = SessionManager(self.transport, self.token_store, audit=self.audit)
        self.resources = ResourceOrchestrator(
            self.session,
            self.transport,
            self.notices,
            confirm=confirm,
            audit=self.audit,
        )

    async def start(self):
        """Verify a persisted session, if any. Blocks until it resolves."""
        session = await self.session.restore_session()
        logger.debug("Console started against %s (%s)", self.config.api_url, session.status.value)
        return session

    async def close(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "ConsoleApp":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
