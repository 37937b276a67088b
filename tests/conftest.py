"""
Shared pytest fixtures for the Kestrel Console test suite.

Autouse fixtures below isolate tests from the operator's real state:
  - Config          -> state dir under tmp_path (no ~/.kestrel-console writes)
  - Audit logger    -> temp directory (no fake events in the real audit log)
  - Token store     -> singleton reset (no real session token touched)

The backend is replaced by ``FakeBackend``, an ``httpx.MockTransport``
handler with a small route table. No network access is needed.
"""

import inspect
import json

import httpx
import pytest

from kestrel_console.admin.notices import NoticeChannel
from kestrel_console.admin.orchestrator import ResourceOrchestrator
from kestrel_console.admin.session import SessionManager
from kestrel_console.admin.transport import ApiTransport
from kestrel_console.config import ConsoleConfig
from kestrel_console.core.audit_log import AuditLogger
from kestrel_console.core.token_store import TokenStore

BASE_URL = "http://kestrel.test"


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path):
    """Point the global config at a per-test state directory."""
    import kestrel_console.config as config_mod

    old_config = config_mod._config
    config_mod._config = ConsoleConfig(api_url=BASE_URL, state_dir=tmp_path / "state")

    yield

    config_mod._config = old_config


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path):
    """Reset the global AuditLogger so get_audit_logger() writes under tmp_path."""
    import kestrel_console.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_token_store():
    """Reset the global TokenStore singleton for every test."""
    import kestrel_console.core.token_store as store_mod

    old_store = store_mod._instance
    store_mod._instance = None

    yield

    store_mod._instance = old_store


# ===================================================================
# Fake backend
# ===================================================================

class FakeBackend:
    """Route table for httpx.MockTransport.

    Routes map ``(method, path)`` to either a canned ``(status, body)``
    or a handler ``request -> httpx.Response`` (sync or async). Unknown
    routes answer 404. Every request is recorded in ``self.requests``.
    """

    def __init__(self):
        self.requests = []
        self._routes = {}

    def on(self, method, path, status=200, json=None, handler=None):
        self._routes[(method.upper(), path)] = handler or (status, json)
        return self

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            response = route(request)
            if inspect.isawaitable(response):
                response = await response
            return response
        status, body = route
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def calls(self, method=None, path=None):
        return [
            r for r in self.requests
            if (method is None or r.method == method)
            and (path is None or r.url.path == path)
        ]

    @staticmethod
    def body(request: httpx.Request):
        return json.loads(request.content) if request.content else None


def login_response(token="tok-123", username="ops", is_admin=True):
    return {"token": token, "user": {"username": username, "is_admin": is_admin}}


# ===================================================================
# Component fixtures
# ===================================================================

@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def transport(backend):
    return ApiTransport(BASE_URL, transport=httpx.MockTransport(backend))


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(db_path=str(tmp_path / "session.db"))


@pytest.fixture
def audit(tmp_path):
    return AuditLogger(log_dir=tmp_path / "audit_logs")


@pytest.fixture
def manager(transport, token_store, audit):
    return SessionManager(transport, token_store, audit=audit)


@pytest.fixture
def notices():
    return NoticeChannel()


@pytest.fixture
def confirmations():
    """Prompts seen by the orchestrator; set ``answer`` to False to decline."""
    return {"prompts": [], "answer": True}


@pytest.fixture
def orchestrator(manager, transport, notices, audit, confirmations):
    def confirm(prompt):
        confirmations["prompts"].append(prompt)
        return confirmations["answer"]

    return ResourceOrchestrator(manager, transport, notices, confirm=confirm, audit=audit)


@pytest.fixture
def sign_in(backend, manager):
    """Async helper: log the manager in against the fake backend."""
    async def _sign_in(token="tok-123", username="ops", is_admin=True):
        backend.on("POST", "/api/auth/login", json=login_response(token, username, is_admin))
        return await manager.login(username, "x")
    return _sign_in
