# Kestrel Console - HTTP Transport
#
# Thin wrapper around httpx.AsyncClient for the backend REST API.
# It owns the shared default headers (including the Authorization default
# that SessionManager sets and clears), decodes JSON bodies and maps every
# failure into the console error taxonomy.
#
# Not retried: every operator action is issued exactly once.

import logging
from typing import Any, Dict, Optional

import httpx

from .errors import (
    AuthFailure,
    ConsoleError,
    TransportFailure,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

USER_AGENT = "KestrelConsole/0.1"
AUTH_HEADER = "Authorization"
REQUEST_TIMEOUT_SEC = 30.0


def bearer(token: str) -> str:
    return f"Bearer {token}"


class ApiTransport:
    """Async JSON client for the Kestrel backend.

    Usage::

        transport = ApiTransport("http://localhost:8080")
        data = await transport.request("GET", "/api/feeds", credential=token)
        await transport.aclose()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT_SEC,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Backend URL, e.g. http://localhost:8080
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests pass MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Shared header defaults
    # ------------------------------------------------------------------

    @property
    def default_headers(self) -> httpx.Headers:
        return self._client.headers

    def set_bearer(self, token: str) -> None:
        """Attach ``token`` to every request dispatched from now on."""
        self._client.headers[AUTH_HEADER] = bearer(token)

    def clear_bearer(self) -> None:
        """Stop attaching a credential. In-flight requests are unaffected."""
        self._client.headers.pop(AUTH_HEADER, None)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        credential: Optional[str] = None,
        anonymous: bool = False,
    ) -> Any:
        """Send one request and return the decoded JSON body (None if empty).

        Headers are fixed when the request is built, so a later
        ``clear_bearer()`` does not change a request already in flight.

        Args:
            credential: Token to send instead of the shared default.
            anonymous: Strip any Authorization header (used by login).

        Raises:
            AuthFailure: 401 or 403.
            ValidationFailure: any other 4xx.
            TransportFailure: network error, timeout, 5xx, bad JSON.
        """
        request = self._client.build_request(method, path, json=json, params=params)
        if anonymous:
            request.headers.pop(AUTH_HEADER, None)
        elif credential:
            request.headers[AUTH_HEADER] = bearer(credential)

        logger.debug("%s %s", method, request.url.path)
        try:
            resp = await self._client.send(request)
        except httpx.TimeoutException as exc:
            raise TransportFailure(f"Request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Network error: {exc}") from exc

        return self._decode(resp, method, path)

    def _decode(self, resp: httpx.Response, method: str, path: str) -> Any:
        if resp.status_code >= 400:
            raise self._status_error(resp, method, path)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportFailure(
                f"Malformed response from {method} {path}", resp.status_code
            ) from exc

    def _status_error(self, resp: httpx.Response, method: str, path: str) -> ConsoleError:
        message = _error_message(resp)
        status = resp.status_code
        logger.info("%s %s -> %d %s", method, path, status, message or "")

        if status in (401, 403):
            return AuthFailure(message or "Unauthorized", status, detail=message)
        if status < 500:
            return ValidationFailure(
                message or f"Request rejected (HTTP {status})", status, detail=message
            )
        return TransportFailure(
            message or f"Server error (HTTP {status})", status, detail=message
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _error_message(resp: httpx.Response) -> Optional[str]:
    """Pull the backend's ``{"error": ...}`` text out of a failed response."""
    try:
        data = resp.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        message = data.get("error")
        if isinstance(message, str) and message:
            return message
    return None
