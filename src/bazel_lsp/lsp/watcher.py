"""
Host filesystem watch facility.

WatcherHost is the seam the editor host fills in. WatchdogWatcherHost is the
standalone implementation used by the CLI, built on the ``watchdog`` library.
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from bazel_lsp.lsp.protocol import FileChangeType

logger = logging.getLogger(__name__)

HostCallback = Callable[[str, FileChangeType], None]
Disposer = Callable[[], None]


class WatcherHost(ABC):
    """Host-side filesystem watching."""

    @abstractmethod
    def watch(self, pattern: str, callback: HostCallback) -> Disposer:
        """
        Start delivering filesystem events for `pattern` to `callback`.

        The host may deliver events outside the pattern; the bridge filters.

        Returns:
            Function that stops the delivery
        """


class WatchdogWatcherHost(WatcherHost):
    """Watches a workspace directory recursively with a watchdog Observer."""

    def __init__(self, workspace_root: str):
        self.workspace_root = os.path.normpath(workspace_root)
        self._observer: Observer | None = None
        self._callbacks: dict[int, HostCallback] = {}
        self._next_key = 0
        self._lock = threading.Lock()

    def watch(self, pattern: str, callback: HostCallback) -> Disposer:
        with self._lock:
            key = self._next_key
            self._next_key += 1
            self._callbacks[key] = callback
            if self._observer is None:
                self._start_observer()
        logger.debug("Watching %s under %s", pattern, self.workspace_root)

        def dispose() -> None:
            with self._lock:
                self._callbacks.pop(key, None)
                stop = not self._callbacks
            if stop:
                self.close()

        return dispose

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def close(self) -> None:
        """Stop the observer thread."""
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
            logger.info("Stopped watching %s", self.workspace_root)

    def _start_observer(self) -> None:
        self._observer = Observer()
        self._observer.daemon = True
        self._observer.schedule(_WatchHandler(self), self.workspace_root, recursive=True)
        self._observer.start()
        logger.info("Started watching %s", self.workspace_root)

    def _emit(self, path: str, change: FileChangeType) -> None:
        with self._lock:
            callbacks = list(self._callbacks.values())
        for cb in callbacks:
            try:
                cb(path, change)
            except Exception:
                logger.exception("File event callback failed for %s (%s)", path, change.name)


class _WatchHandler(FileSystemEventHandler):
    """Translates watchdog events into LSP change types."""

    def __init__(self, host: WatchdogWatcherHost) -> None:
        super().__init__()
        self._host = host

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._host._emit(_decode(event.src_path), FileChangeType.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._host._emit(_decode(event.src_path), FileChangeType.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._host._emit(_decode(event.src_path), FileChangeType.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._host._emit(_decode(event.src_path), FileChangeType.DELETED)
            self._host._emit(_decode(event.dest_path), FileChangeType.CREATED)


def _decode(path: str | bytes) -> str:
    return os.fsdecode(path)
