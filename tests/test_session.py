"""
Integration tests for the session lifecycle against tests/fake_server.py.
"""

import threading
import time
from pathlib import Path

import pytest

from bazel_lsp.lsp.document_router import TextDocument
from bazel_lsp.lsp.errors import (
    CancelledRequest,
    InvalidStateError,
    LaunchError,
    LaunchErrorKind,
    ShutdownTimeout,
    StartupError,
)
from bazel_lsp.lsp.file_watch import DID_CHANGE_WATCHED_FILES
from bazel_lsp.lsp.protocol import FileChangeType
from bazel_lsp.lsp.session import SessionState


def wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def received(session):
    return session.send_request("test/received").result(timeout=5)


def build_file(session, text='cc_library(name = "lib")\n', version=1):
    uri = (Path(session.workspace_root) / "pkg" / "BUILD").as_uri()
    return TextDocument(uri=uri, language_id="plaintext", version=version, text=text)


class TestLifecycle:
    def test_start_and_stop(self, make_session):
        session = make_session()
        transitions = []
        session.add_state_listener(lambda old, new: transitions.append(new))

        result = session.start()
        assert session.state == SessionState.RUNNING
        assert result["serverInfo"]["name"] == "fake-bazel-server"
        assert session.server_capabilities["definitionProvider"] is True
        process = session.process
        assert process.is_alive

        session.stop().result(timeout=10)
        assert session.state == SessionState.STOPPED
        assert transitions == [
            SessionState.STARTING,
            SessionState.RUNNING,
            SessionState.STOPPING,
            SessionState.STOPPED,
        ]
        assert process.returncode == 0
        assert session.shutdown_error is None

    def test_handshake_order(self, make_session):
        session = make_session()
        session.start()
        assert [n["method"] for n in received(session)] == ["initialized"]

    def test_stop_twice_returns_same_future(self, make_session):
        session = make_session()
        session.start()
        first = session.stop()
        second = session.stop()
        assert first is second
        first.result(timeout=10)

    def test_stop_before_start(self, make_session):
        session = make_session()
        session.stop().result(timeout=5)
        assert session.state == SessionState.STOPPED
        with pytest.raises(InvalidStateError):
            session.start()

    def test_start_twice(self, make_session):
        session = make_session()
        session.start()
        with pytest.raises(InvalidStateError):
            session.start()
        assert session.state == SessionState.RUNNING

    def test_pending_requests_cancelled_on_stop(self, make_session):
        session = make_session()
        session.start()
        slow = session.send_request("test/slow")

        session.stop().result(timeout=10)
        with pytest.raises(CancelledRequest):
            slow.result(timeout=5)

    def test_requests_need_running_session(self, make_session):
        session = make_session()
        with pytest.raises(InvalidStateError):
            session.send_request("test/echo")
        session.start()
        assert session.send_request("test/echo", {"x": 1}).result(timeout=5) == {"x": 1}
        session.stop().result(timeout=10)
        with pytest.raises(InvalidStateError):
            session.send_notification("test/ping")


class TestStartupFailures:
    def test_missing_executable(self, make_session, host, tmp_path):
        session = make_session(executable=str(tmp_path / "no-such-server"))

        with pytest.raises(LaunchError) as excinfo:
            session.start()
        assert excinfo.value.kind is LaunchErrorKind.NOT_FOUND
        assert session.state == SessionState.STOPPED
        assert session.process is None
        assert len(host.errors) == 1

    def test_initialize_error(self, make_session, host):
        session = make_session("--fail-initialize")
        with pytest.raises(StartupError):
            session.start()
        assert session.state == SessionState.STOPPED
        assert host.errors

    def test_initialize_timeout(self, make_session):
        session = make_session("--hang-initialize", startup_timeout=0.5)
        with pytest.raises(StartupError, match="No initialize response"):
            session.start()
        assert session.state == SessionState.STOPPED
        assert session.process is None

    def test_stop_during_startup(self, make_session):
        session = make_session("--hang-initialize")
        starting = threading.Event()
        session.add_state_listener(
            lambda old, new: starting.set() if new == SessionState.STARTING else None
        )
        errors = []

        def run():
            try:
                session.start()
            except StartupError as e:
                errors.append(e)

        thread = threading.Thread(target=run)
        thread.start()
        assert starting.wait(10)
        process = session.process

        session.stop().result(timeout=10)
        thread.join(10)

        assert session.state == SessionState.STOPPED
        assert len(errors) == 1
        assert not process.is_alive


class TestShutdown:
    def test_server_ignores_shutdown(self, make_session):
        session = make_session("--ignore-shutdown", shutdown_timeout=0.5)
        session.start()
        process = session.process

        session.stop().result(timeout=10)
        assert isinstance(session.shutdown_error, ShutdownTimeout)
        assert session.state == SessionState.STOPPED
        assert not process.is_alive


class TestTransportFailure:
    @pytest.mark.parametrize("flag", ["--garbage-after-init", "--crash-after-init"])
    def test_failure_stops_session(self, make_session, host, flag):
        session = make_session(flag)
        session.start()

        assert wait_for(lambda: session.state == SessionState.STOPPED)
        assert not session.healthy
        assert host.errors

    def test_no_traffic_after_failure(self, make_session):
        session = make_session("--crash-after-init")
        session.start()
        assert wait_for(lambda: session.state == SessionState.STOPPED)
        assert not session.did_open(build_file(session))


class TestDocuments:
    def test_in_scope_document_is_forwarded(self, make_session):
        session = make_session()
        session.start()
        doc = build_file(session)

        assert session.did_open(doc)
        assert session.did_change(build_file(session, "cc_binary()\n", version=2))
        assert session.did_close(doc)

        methods = [n["method"] for n in received(session)]
        assert methods == [
            "initialized",
            "textDocument/didOpen",
            "textDocument/didChange",
            "textDocument/didClose",
        ]

    def test_out_of_scope_document_is_rejected(self, make_session):
        session = make_session()
        session.start()
        readme = TextDocument(
            uri=(Path(session.workspace_root) / "README.md").as_uri(), language_id="markdown", version=1
        )

        assert not session.did_open(readme)
        assert [n["method"] for n in received(session)] == ["initialized"]

    def test_documents_rejected_before_start(self, make_session):
        session = make_session()
        assert not session.did_open(build_file(session))

    def test_sync_options_open_close_only(self, make_session):
        session = make_session()
        session.start()
        session.server_capabilities = {"textDocumentSync": {"openClose": True}}
        doc = build_file(session)

        session.did_open(doc)
        session.did_change(build_file(session, "cc_binary()\n", version=2))
        session.did_close(doc)

        methods = [n["method"] for n in received(session)]
        assert methods == ["initialized", "textDocument/didOpen", "textDocument/didClose"]

    def test_sync_options_change_without_open_close(self, make_session):
        session = make_session()
        session.start()
        session.server_capabilities = {"textDocumentSync": {"openClose": False, "change": 1}}
        doc = build_file(session)

        session.did_open(doc)
        session.did_change(build_file(session, "cc_binary()\n", version=2))
        session.did_close(doc)

        methods = [n["method"] for n in received(session)]
        assert methods == ["initialized", "textDocument/didChange"]

    @pytest.mark.parametrize("sync, expected", [
        (0, ["initialized"]),
        (1, ["initialized", "textDocument/didOpen", "textDocument/didChange", "textDocument/didClose"]),
    ])
    def test_sync_kind_number(self, make_session, sync, expected):
        session = make_session()
        session.start()
        session.server_capabilities = {"textDocumentSync": sync}
        doc = build_file(session)

        session.did_open(doc)
        session.did_change(build_file(session, "cc_binary()\n", version=2))
        session.did_close(doc)

        assert [n["method"] for n in received(session)] == expected

    def test_goto_definition(self, make_session):
        session = make_session()
        session.start()
        doc = build_file(session)
        session.did_open(doc)

        location = session.goto_definition(doc.uri, 0, 3)
        assert location.uri == doc.uri
        assert location.range.start.line == 3
        assert location.range.end.character == 12


class TestServerTraffic:
    def test_diagnostics_reach_host(self, make_session, host):
        session = make_session()
        session.start()
        uri = build_file(session).uri

        assert session.send_request("test/notify", {"uri": uri}).result(timeout=5) == "ok"
        assert session.drain(5)
        assert host.diagnostics[uri][0]["message"] == "unknown rule"

    def test_custom_notification_handler(self, make_session):
        session = make_session()
        seen = []
        session.on_notification("textDocument/publishDiagnostics", lambda params: seen.append(params["uri"]))
        session.start()

        session.send_request("test/notify", {"uri": "file:///x/BUILD"}).result(timeout=5)
        session.drain(5)
        assert seen == ["file:///x/BUILD"]


class TestFileEvents:
    def test_events_forwarded_while_running(self, make_session, watcher):
        session = make_session()
        session.start()
        workspace_file = Path(session.workspace_root) / "WORKSPACE"

        watcher.fire(str(workspace_file), FileChangeType.CHANGED)
        watcher.fire(str(Path(session.workspace_root) / "pkg" / "BUILD"), FileChangeType.CHANGED)
        session.drain(5)

        changes = [n for n in received(session) if n["method"] == DID_CHANGE_WATCHED_FILES]
        assert changes == [{
            "method": DID_CHANGE_WATCHED_FILES,
            "params": {"changes": [{"uri": workspace_file.as_uri(), "type": 2}]},
        }]

    def test_nothing_is_watched_before_start(self, make_session, watcher):
        session = make_session()
        assert watcher.patterns == []

        watcher.fire(str(Path(session.workspace_root) / "WORKSPACE"))
        session.drain(5)

        session.start()
        assert watcher.patterns == ["**/WORKSPACE"]
        assert [n["method"] for n in received(session)] == ["initialized"]

    def test_events_during_startup_are_dropped(self, make_session, watcher):
        session = make_session("--hang-initialize")
        workspace_file = str(Path(session.workspace_root) / "WORKSPACE")
        errors = []

        def run():
            try:
                session.start()
            except StartupError as e:
                errors.append(e)

        thread = threading.Thread(target=run)
        thread.start()
        assert wait_for(lambda: watcher.callbacks)
        assert session.state == SessionState.STARTING
        watcher.fire(workspace_file)
        session.drain(5)
        assert session.file_watch.dropped == 1

        session.stop().result(timeout=10)
        thread.join(10)
        assert len(errors) == 1

    def test_never_started_session_watches_nothing(self, make_session, watcher):
        make_session().stop().result(timeout=5)
        assert watcher.callbacks == {}
        assert watcher.patterns == []

    def test_watches_disposed_on_stop(self, make_session, watcher):
        session = make_session()
        session.start()
        assert watcher.callbacks

        session.stop().result(timeout=10)
        assert watcher.callbacks == {}
