"""
Host entry points.

The host calls activate() once per workspace and keeps the returned Session;
deactivate() receives it back. There is no module-level client.
"""

from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Optional

from bazel_lsp.lsp.config import ServerConfig, load_server_config
from bazel_lsp.lsp.session import Session, SessionHost
from bazel_lsp.lsp.watcher import WatchdogWatcherHost, WatcherHost


@dataclass
class ExtensionContext:
    """What the host knows about this client installation."""

    extension_path: str
    workspace_root: str


def activate(
    context: ExtensionContext,
    config: Optional[ServerConfig] = None,
    host: Optional[SessionHost] = None,
    watcher_host: Optional[WatcherHost] = None,
) -> Session:
    """
    Create a session for the workspace and start the server.

    Raises:
        LaunchError: The server could not be spawned
        StartupError: The initialize handshake failed
    """
    if config is None:
        config = load_server_config(install_root=context.extension_path)
    elif config.install_root is None:
        config = replace(config, install_root=context.extension_path)

    if watcher_host is None:
        watcher_host = WatchdogWatcherHost(context.workspace_root)

    session = Session(config, context.workspace_root, host=host, watcher_host=watcher_host)
    session.start()
    return session


def deactivate(session: Optional[Session]) -> Optional[Future]:
    """Stop the session. The host awaits the returned future before exiting."""
    if session is None:
        return None
    return session.stop()
