"""
Shared fixtures: a scripted fake server, a recording host and an in-memory watcher.
"""

import os
import sys
import threading
from typing import Dict, List

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.dirname(__file__))

from bazel_lsp.lsp.config import ServerConfig
from bazel_lsp.lsp.file_watch import WatchPattern
from bazel_lsp.lsp.protocol import FileChangeType
from bazel_lsp.lsp.session import Session, SessionHost
from bazel_lsp.lsp.watcher import WatcherHost

FAKE_SERVER = os.path.join(os.path.dirname(__file__), "fake_server.py")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class RecordingHost(SessionHost):
    """Collects everything the session surfaces to the host."""

    def __init__(self):
        self.errors: List[str] = []
        self.messages: List[tuple] = []
        self.diagnostics: Dict[str, list] = {}
        self.diagnostics_received = threading.Event()

    def show_error(self, message):
        self.errors.append(message)

    def show_message(self, message_type, message):
        self.messages.append((message_type, message))

    def publish_diagnostics(self, uri, diagnostics):
        self.diagnostics[uri] = diagnostics
        self.diagnostics_received.set()


class FakeWatcherHost(WatcherHost):
    """Watcher host the test fires events through by hand."""

    def __init__(self):
        self.callbacks = {}
        self.patterns = []
        self._next = 0

    def watch(self, pattern, callback):
        key = self._next
        self._next += 1
        self.callbacks[key] = callback
        self.patterns.append(pattern)
        return lambda: self.callbacks.pop(key, None)

    def fire(self, path, change=FileChangeType.CHANGED):
        for cb in list(self.callbacks.values()):
            cb(path, change)


def fake_config(*flags, **overrides) -> ServerConfig:
    """ServerConfig that launches tests/fake_server.py with the given flags."""
    settings = dict(
        executable=sys.executable,
        args=[FAKE_SERVER, *flags],
        watch_patterns=(WatchPattern("**/WORKSPACE"),),
        startup_timeout=10.0,
        shutdown_timeout=2.0,
    )
    settings.update(overrides)
    return ServerConfig(**settings)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def host():
    return RecordingHost()


@pytest.fixture
def watcher():
    return FakeWatcherHost()


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "repo"
    (root / "pkg").mkdir(parents=True)
    (root / "WORKSPACE").write_text('workspace(name = "repo")\n')
    (root / "pkg" / "BUILD").write_text('cc_library(name = "lib")\n')
    return root


@pytest.fixture
def make_session(workspace, host, watcher):
    """Factory for sessions against the fake server; all are stopped at teardown."""
    sessions = []

    def factory(*flags, **overrides):
        session = Session(fake_config(*flags, **overrides), str(workspace), host=host, watcher_host=watcher)
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        session.stop().result(timeout=30)
