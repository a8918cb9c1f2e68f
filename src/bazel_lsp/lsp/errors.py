"""
Error taxonomy for the language client.

Every failure the client surfaces to the host derives from LanguageClientError.
"""

from enum import Enum
from typing import Any, Optional


class LanguageClientError(Exception):
    """Base class for all client errors."""


class LaunchErrorKind(str, Enum):
    """Why the server process could not be launched."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    SPAWN_FAILED = "spawn_failed"


class LaunchError(LanguageClientError):
    """The server executable is missing or unusable."""

    def __init__(self, kind: LaunchErrorKind, executable: str, detail: str = ""):
        self.kind = kind
        self.executable = executable
        self.detail = detail
        message = f"Cannot launch language server '{executable}': {kind.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ProtocolError(LanguageClientError):
    """Malformed or out-of-sequence wire message."""


class TransportClosed(LanguageClientError):
    """A message was sent on a transport that is already closed."""


class StartupError(LanguageClientError):
    """The initialize handshake failed, timed out or was interrupted."""


class ShutdownTimeout(LanguageClientError):
    """The server did not answer shutdown in time. Never fatal."""


class CancelledRequest(LanguageClientError):
    """A pending request was resolved because the session tore down."""

    def __init__(self, method: str, request_id: int):
        self.method = method
        self.request_id = request_id
        super().__init__(f"Request {request_id} ({method}) cancelled by session teardown")


class InvalidStateError(LanguageClientError):
    """An operation was attempted in a lifecycle state that does not allow it."""


class ResponseError(LanguageClientError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")
