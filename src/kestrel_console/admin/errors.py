"""
Error taxonomy for console operations.

Every failure an operation can hit ends up as one of four kinds:

  AuthFailure          bad credentials, missing or expired token (401/403)
  ValidationFailure    the backend rejected a payload (other 4xx)
  TransportFailure     network error, timeout, 5xx, malformed response
  PreconditionFailure  rejected locally before any request was made

The orchestrator turns all of them into notices; SessionManager.login is the
one operation that hands them to its caller.
"""

from typing import Optional


class ConsoleError(Exception):
    """Base class for errors surfaced to the operator."""

    kind = "error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        # The backend's own {"error": ...} text, when it sent one
        self.detail = detail

    def __str__(self) -> str:
        return self.message


class AuthFailure(ConsoleError):
    kind = "auth"


class ValidationFailure(ConsoleError):
    kind = "validation"


class TransportFailure(ConsoleError):
    kind = "transport"


class PreconditionFailure(ConsoleError):
    """Local rejection; ``field`` names the missing or invalid input."""

    kind = "precondition"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
