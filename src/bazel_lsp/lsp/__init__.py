"""
LSP (Language Server Protocol) client module.

Manages one language server session per workspace:
- Launching the server process
- JSON-RPC transport over stdio
- Document selector routing
- Watched file forwarding
- Ordered startup and shutdown
"""

from bazel_lsp.lsp.config import ServerConfig, load_server_config
from bazel_lsp.lsp.document_router import (
    DocumentFilter,
    DocumentRouter,
    DocumentSelector,
    TextDocument,
    matches,
)
from bazel_lsp.lsp.errors import (
    CancelledRequest,
    InvalidStateError,
    LanguageClientError,
    LaunchError,
    LaunchErrorKind,
    ProtocolError,
    ResponseError,
    ShutdownTimeout,
    StartupError,
    TransportClosed,
)
from bazel_lsp.lsp.file_watch import FileEvent, FileWatchBridge, WatchHandle, WatchPattern
from bazel_lsp.lsp.launcher import ProcessHandle, ProcessOptions, launch
from bazel_lsp.lsp.session import Session, SessionHost, SessionState
from bazel_lsp.lsp.transport import SessionTransport
from bazel_lsp.lsp.watcher import WatchdogWatcherHost, WatcherHost

__all__ = [
    "ServerConfig",
    "load_server_config",
    "DocumentFilter",
    "DocumentRouter",
    "DocumentSelector",
    "TextDocument",
    "matches",
    "CancelledRequest",
    "InvalidStateError",
    "LanguageClientError",
    "LaunchError",
    "LaunchErrorKind",
    "ProtocolError",
    "ResponseError",
    "ShutdownTimeout",
    "StartupError",
    "TransportClosed",
    "FileEvent",
    "FileWatchBridge",
    "WatchHandle",
    "WatchPattern",
    "ProcessHandle",
    "ProcessOptions",
    "launch",
    "Session",
    "SessionHost",
    "SessionState",
    "SessionTransport",
    "WatchdogWatcherHost",
    "WatcherHost",
]
