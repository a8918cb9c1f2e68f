"""
File Watch Bridge - forwards host filesystem events to the server.

Every qualifying host event becomes exactly one
workspace/didChangeWatchedFiles notification, in the order the host reports
them. Events that arrive while the session is not running are dropped.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from bazel_lsp.lsp.document_router import glob_match
from bazel_lsp.lsp.protocol import FileChangeType, path_to_uri
from bazel_lsp.lsp.watcher import Disposer, WatcherHost

logger = logging.getLogger(__name__)

DID_CHANGE_WATCHED_FILES = "workspace/didChangeWatchedFiles"


@dataclass(frozen=True)
class WatchPattern:
    """Glob describing relevant filesystem changes. Scheme is always file."""

    glob: str
    scheme: str = "file"


@dataclass(frozen=True)
class FileEvent:
    """One filesystem change."""

    uri: str
    type: FileChangeType

    def to_dict(self) -> Dict:
        return {"uri": self.uri, "type": int(self.type)}


@dataclass
class WatchHandle:
    """A registered watch pattern and its event handlers."""

    id: int
    pattern: WatchPattern
    handlers: List[Callable[[FileEvent], None]] = field(default_factory=list)
    dispose: Optional[Disposer] = None


class FileWatchBridge:
    """
    Connects host watchers to a session.

    Args:
        host: The host's watch facility
        send_notification: Sends a protocol notification on the session transport
        is_running: Whether the session currently accepts traffic
        dispatch: Puts work on the session's event queue
        workspace_root: Root the watch globs are anchored to
    """

    def __init__(
        self,
        host: WatcherHost,
        send_notification: Callable[[str, Dict], None],
        is_running: Callable[[], bool],
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
        workspace_root: Optional[str] = None,
    ):
        self._host = host
        self._send_notification = send_notification
        self._is_running = is_running
        self._dispatch = dispatch or (lambda fn: fn())
        self.workspace_root = workspace_root
        self._handles: Dict[int, WatchHandle] = {}
        self._next_id = 0
        self._lock = threading.Lock()
        self.forwarded = 0
        self.dropped = 0

    def register_watch(self, pattern: WatchPattern) -> WatchHandle:
        """Register a pattern with the host and start forwarding its events."""
        with self._lock:
            self._next_id += 1
            handle = WatchHandle(id=self._next_id, pattern=pattern)
            self._handles[handle.id] = handle

        handle.dispose = self._host.watch(
            pattern.glob, lambda path, change: self.handle_host_event(handle, path, change)
        )
        logger.info(f"Registered file watch {handle.id}: {pattern.glob}")
        return handle

    def on_file_event(self, handle: WatchHandle, handler: Callable[[FileEvent], None]):
        """Observe events forwarded for `handle`."""
        handle.handlers.append(handler)

    def handle_host_event(self, handle: WatchHandle, path: str, change: FileChangeType):
        """Entry point for raw host events (any thread)."""
        if not glob_match(handle.pattern.glob, path, self.workspace_root):
            return
        event = FileEvent(uri=path_to_uri(path), type=FileChangeType(change))
        self._dispatch(lambda: self._forward(handle, event))

    def dispose(self):
        """Unregister every watch from the host."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()

        for handle in handles:
            if handle.dispose is not None:
                try:
                    handle.dispose()
                except Exception:
                    logger.exception(f"Failed to dispose file watch {handle.id}")
        if handles:
            logger.info(f"Disposed {len(handles)} file watch(es)")

    @property
    def handles(self) -> List[WatchHandle]:
        with self._lock:
            return list(self._handles.values())

    def _forward(self, handle: WatchHandle, event: FileEvent):
        if not self._is_running():
            self.dropped += 1
            logger.info(f"Dropped {event.type.name} {event.uri}: session not running")
            return

        self._send_notification(DID_CHANGE_WATCHED_FILES, {"changes": [event.to_dict()]})
        self.forwarded += 1

        for handler in list(handle.handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"File event handler failed for {event.uri}")
