"""
Lifecycle Controller - owns one language server session.

    UNINITIALIZED -> STARTING -> RUNNING -> STOPPING -> STOPPED

STOPPED is terminal; restarting means constructing a new Session.
"""

import logging
import os
import threading
import uuid
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from bazel_lsp.lsp.config import ServerConfig
from bazel_lsp.lsp.document_manager import DocumentManager
from bazel_lsp.lsp.document_router import DocumentRouter, TextDocument
from bazel_lsp.lsp.errors import (
    CancelledRequest,
    InvalidStateError,
    LaunchError,
    ResponseError,
    ShutdownTimeout,
    StartupError,
    TransportClosed,
)
from bazel_lsp.lsp.event_queue import EventQueue
from bazel_lsp.lsp.file_watch import FileWatchBridge, WatchHandle
from bazel_lsp.lsp.launcher import ProcessHandle, launch
from bazel_lsp.lsp.protocol import Location, LSPMessage, TextDocumentSyncKind
from bazel_lsp.lsp.transport import SessionTransport
from bazel_lsp.lsp.watcher import WatcherHost
from bazel_lsp.utils.logger import logger as client_log

logger = logging.getLogger(__name__)

CLIENT_NAME = "bazel-lsp"


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


_TRANSITIONS = {
    SessionState.UNINITIALIZED: {SessionState.STARTING, SessionState.STOPPED},
    SessionState.STARTING: {SessionState.RUNNING, SessionState.STOPPING, SessionState.STOPPED},
    SessionState.RUNNING: {SessionState.STOPPING},
    SessionState.STOPPING: {SessionState.STOPPED},
    SessionState.STOPPED: set(),
}

_LOG_LEVELS = {1: "error", 2: "warning", 3: "info", 4: "debug"}


class SessionHost:
    """
    Callbacks into the editor host.

    The defaults log; hosts override what they present to the user.
    """

    def show_error(self, message: str):
        logger.error(message)

    def show_message(self, message_type: int, message: str):
        logger.info(f"[server] {message}")

    def publish_diagnostics(self, uri: str, diagnostics: List[Dict]):
        logger.debug(f"{len(diagnostics)} diagnostic(s) for {uri}")


class Session:
    """
    One connection to a language server process.

    Manages:
    - Server process lifecycle (spawn, handshake, shutdown)
    - Routing host document events through the document selector
    - Forwarding watched file events
    - Relaying server diagnostics and messages to the host

    State transitions are serialised by the session lock, which is never held
    while waiting on the server. Server traffic and file events run on the
    session's event queue.
    """

    def __init__(
        self,
        config: ServerConfig,
        workspace_root: str,
        host: Optional[SessionHost] = None,
        watcher_host: Optional[WatcherHost] = None,
        launcher: Callable[..., ProcessHandle] = launch,
    ):
        """
        Initialize a session. Nothing is launched or watched until start().

        Args:
            config: Server configuration
            workspace_root: Workspace directory the server is rooted at
            host: Editor host callbacks
            watcher_host: Host filesystem watch facility; file watching is off without one
            launcher: Spawns the server process
        """
        self.config = config
        self.id = uuid.uuid4().hex[:8]
        self.name = config.name
        self.workspace_root = str(Path(workspace_root).resolve())
        self.host = host or SessionHost()
        self.server_capabilities: Dict[str, Any] = {}
        self.server_info: Optional[Dict] = None
        self.healthy = True
        self.shutdown_error: Optional[Exception] = None
        self._failure: Optional[Exception] = None

        self._launch = launcher
        self._state = SessionState.UNINITIALIZED
        self._lock = threading.RLock()
        self._state_listeners: List[Callable[[SessionState, SessionState], None]] = []
        self._notification_handlers: Dict[str, Callable[[Any], None]] = {}
        self._process: Optional[ProcessHandle] = None
        self._transport: Optional[SessionTransport] = None
        self._stop_future: Optional[Future] = None
        self._events = EventQueue(f"{config.id}-{self.id}")

        self.router = DocumentRouter(config.selector, self.workspace_root)
        self.documents = DocumentManager(self._notify, self._sync_kind, self._open_close)
        self.watches: List[WatchHandle] = []
        self.file_watch: Optional[FileWatchBridge] = None
        if watcher_host is not None:
            self.file_watch = FileWatchBridge(
                watcher_host,
                self._notify,
                lambda: self.state == SessionState.RUNNING,
                dispatch=self._events.post,
                workspace_root=self.workspace_root,
            )

    def __repr__(self) -> str:
        return f"<Session {self.name} [{self.id}] {self._state.value}>"

    @property
    def label(self) -> str:
        return f"{self.name} [{self.id}]"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def process(self) -> Optional[ProcessHandle]:
        return self._process

    @property
    def is_running(self) -> bool:
        return self._state == SessionState.RUNNING

    def add_state_listener(self, listener: Callable[[SessionState, SessionState], None]):
        """Call listener(old, new) on every transition."""
        self._state_listeners.append(listener)

    # --- Lifecycle ---

    def start(self) -> Dict:
        """
        Launch the server and perform the initialize handshake.

        Returns:
            The server's InitializeResult

        Raises:
            InvalidStateError: The session was already started
            LaunchError: The server could not be spawned (session is STOPPED)
            StartupError: The handshake failed (session is STOPPED)
        """
        try:
            with self._lock:
                if self._state != SessionState.UNINITIALIZED:
                    raise InvalidStateError(f"Cannot start session in state {self._state.value}")

                options = self.config.options
                if options.cwd is None:
                    options = replace(options, cwd=self.workspace_root)

                process = self._launch(
                    self.config.executable,
                    self.config.args,
                    options,
                    install_root=self.config.install_root,
                )
                self._process = process
                self._transport = transport = self._attach(process)
                self._set_state(SessionState.STARTING)
                self._register_watches()
        except LaunchError as e:
            with self._lock:
                self._set_state(SessionState.STOPPED)
            self._release()
            self.host.show_error(f"{self.name}: {e}")
            raise

        params = LSPMessage.initialize_params(
            self.workspace_root,
            os.getpid(),
            CLIENT_NAME,
            self.config.initialization_options,
        )
        try:
            result = transport.send_request("initialize", params).result(
                timeout=self.config.startup_timeout
            )
        except FutureTimeout as e:
            self._abort_startup(
                StartupError(f"No initialize response within {self.config.startup_timeout}s"), e
            )
        except (ResponseError, CancelledRequest, TransportClosed) as e:
            self._abort_startup(StartupError(f"Initialize failed: {self._failure or e}"), e)

        with self._lock:
            if self._state != SessionState.STARTING:
                raise StartupError(f"Session stopped during startup ({self._state.value})")
            result = result or {}
            self.server_capabilities = result.get("capabilities") or {}
            self.server_info = result.get("serverInfo")
            try:
                transport.send_notification("initialized", {})
            except TransportClosed as e:
                failure = e
            else:
                failure = None
                self._set_state(SessionState.RUNNING)

        if failure is not None:
            self._abort_startup(StartupError(f"Initialized notification failed: {failure}"), failure)

        client_log.session_started(self.label, process.pid, self.server_capabilities)
        return result

    def stop(self) -> Future:
        """
        Shut the server down and tear the session down.

        Repeated calls return the same future without a second teardown.

        Returns:
            Future resolved once the session is STOPPED
        """
        with self._lock:
            if self._stop_future is not None:
                return self._stop_future
            future: Future = Future()
            self._stop_future = future
            state = self._state

            if state == SessionState.UNINITIALIZED:
                self._set_state(SessionState.STOPPED)
            elif state != SessionState.STOPPED:
                self._set_state(SessionState.STOPPING)
            transport, process = self._transport, self._process

        if state in (SessionState.UNINITIALIZED, SessionState.STOPPED):
            self._release()
            future.set_result(None)
            return future

        try:
            cancelled, forced = self._teardown(transport, process)
            client_log.session_stopped(self.label, cancelled, forced)
        finally:
            with self._lock:
                self._process = None
                self._transport = None
                self._set_state(SessionState.STOPPED)
            self._release()
            future.set_result(None)
        return future

    # --- Host document events ---

    def did_open(self, document: TextDocument) -> bool:
        """Forward a document open. False if the session rejected it."""
        with self._lock:
            if not self._accepts(document):
                return False
            return self.documents.open_document(document)

    def did_change(self, document: TextDocument) -> bool:
        """Forward new document content. False if the session rejected it."""
        with self._lock:
            if not self._accepts(document):
                return False
            return self.documents.change_document(document)

    def did_close(self, document: Union[TextDocument, str]) -> bool:
        """Forward a document close. False if the document was not open here."""
        uri = document if isinstance(document, str) else document.uri
        with self._lock:
            if self._state != SessionState.RUNNING:
                client_log.document_rejected(self.label, uri, f"session {self._state.value}")
                return False
            return self.documents.close_document(uri)

    # --- Requests ---

    def send_request(self, method: str, params: Optional[Any] = None) -> Future:
        """Send a request to the running server."""
        with self._lock:
            if self._state != SessionState.RUNNING:
                raise InvalidStateError(f"Cannot send {method} while {self._state.value}")
            return self._transport.send_request(method, params)

    def send_notification(self, method: str, params: Optional[Any] = None):
        with self._lock:
            if self._state != SessionState.RUNNING:
                raise InvalidStateError(f"Cannot send {method} while {self._state.value}")
            self._transport.send_notification(method, params)

    def on_notification(self, method: str, handler: Callable[[Any], None]):
        """Handle server notifications for `method` on the session's event queue."""
        self._notification_handlers[method] = handler
        with self._lock:
            if self._transport is not None:
                self._transport.on_notification(method, handler)

    def goto_definition(
        self, uri: str, line: int, character: int, timeout: float = 30.0
    ) -> Optional[Location]:
        """
        Get definition location for symbol at position.

        Args:
            uri: Document URI
            line: 0-indexed line number
            character: 0-indexed character offset
            timeout: Seconds to wait for the server

        Returns:
            Location of definition, or None
        """
        future = self.send_request(
            "textDocument/definition",
            {"textDocument": {"uri": uri}, "position": {"line": line, "character": character}},
        )
        return Location.from_result(future.result(timeout=timeout))

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until queued server traffic and file events have been handled."""
        return self._events.drain(timeout)

    # --- Internal methods ---

    def _set_state(self, new: SessionState):
        old = self._state
        if new not in _TRANSITIONS[old]:
            raise InvalidStateError(f"Illegal transition {old.value} -> {new.value}")
        self._state = new
        client_log.session_state(self.label, old.value, new.value)
        for listener in list(self._state_listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("State listener failed")

    def _attach(self, process: ProcessHandle) -> SessionTransport:
        transport = SessionTransport(
            process.stdout,
            process.stdin,
            dispatch=self._events.post,
            on_failure=self._on_transport_failure,
            name=self.config.id,
        )
        transport.on_notification("textDocument/publishDiagnostics", self._on_diagnostics)
        transport.on_notification("window/showMessage", self._on_show_message)
        transport.on_notification("window/logMessage", self._on_log_message)
        transport.on_request("window/workDoneProgress/create", lambda params: None)
        transport.on_request("client/registerCapability", lambda params: None)
        transport.on_request("client/unregisterCapability", lambda params: None)
        transport.on_request("window/showMessageRequest", self._on_show_message_request)
        transport.on_request(
            "workspace/configuration",
            lambda params: [None] * len((params or {}).get("items", [])),
        )
        for method, handler in self._notification_handlers.items():
            transport.on_notification(method, handler)
        transport.start()
        return transport

    def _abort_startup(self, error: StartupError, cause: Exception):
        """Tear down a failed handshake and raise `error`."""
        with self._lock:
            owner = self._state == SessionState.STARTING
            if owner:
                transport, process = self._transport, self._process
                self._transport = None
                self._process = None
                self._set_state(SessionState.STOPPED)

        # Otherwise stop() got there first and owns the teardown
        if owner:
            transport.close()
            process.terminate(self.config.shutdown_timeout)
            self._release()
        self.host.show_error(f"{self.name}: {error}")
        raise error from cause

    def _teardown(self, transport: SessionTransport, process: ProcessHandle):
        """Cancel, shutdown, exit, terminate. Returns (cancelled count, forced)."""
        cancelled = len(transport.cancel_pending())
        forced = transport.is_closed

        if not transport.is_closed:
            try:
                transport.send_request("shutdown").result(timeout=self.config.shutdown_timeout)
            except FutureTimeout:
                self.shutdown_error = ShutdownTimeout(
                    f"No shutdown response within {self.config.shutdown_timeout}s"
                )
                client_log.shutdown_timeout(self.label, self.config.shutdown_timeout)
                forced = True
            except (ResponseError, CancelledRequest, TransportClosed) as e:
                self.shutdown_error = e
                logger.warning(f"{self.label}: shutdown request failed: {e}")
                forced = True

            try:
                transport.send_notification("exit")
            except TransportClosed as e:
                logger.warning(f"{self.label}: exit notification failed: {e}")

        cancelled += len(transport.close())

        if process.wait(0 if forced else self.config.shutdown_timeout) is None:
            forced = True
        process.terminate(self.config.shutdown_timeout)
        return cancelled, forced

    def _register_watches(self):
        """Start file watching. Events are dropped until RUNNING."""
        if self.file_watch is None:
            return
        try:
            self.watches = [self.file_watch.register_watch(p) for p in self.config.watch_patterns]
        except OSError as e:
            client_log.warning("WATCH", f"{self.label}: file watching unavailable: {e}")

    def _release(self):
        """Drop host-side resources. Called once the session is STOPPED."""
        if self.file_watch is not None:
            self.file_watch.dispose()
        self.documents.forget_all()
        self._events.close()

    def _accepts(self, document: TextDocument) -> bool:
        if self._state != SessionState.RUNNING:
            client_log.document_rejected(self.label, document.uri, f"session {self._state.value}")
            return False
        if not self.router.is_in_scope(document):
            client_log.document_rejected(self.label, document.uri, "no selector match")
            return False
        return True

    def _notify(self, method: str, params: Dict):
        with self._lock:
            if self._state != SessionState.RUNNING:
                logger.debug(f"Not sending {method}: session {self._state.value}")
                return
            try:
                self._transport.send_notification(method, params)
            except TransportClosed as e:
                logger.warning(f"{self.label}: could not send {method}: {e}")

    def _sync_kind(self) -> TextDocumentSyncKind:
        sync = self.server_capabilities.get("textDocumentSync", TextDocumentSyncKind.FULL)
        if isinstance(sync, dict):
            sync = sync.get("change", TextDocumentSyncKind.NONE)
        try:
            return TextDocumentSyncKind(sync)
        except ValueError:
            return TextDocumentSyncKind.FULL

    def _open_close(self) -> bool:
        # TextDocumentSyncOptions carries openClose; the bare number form implies it
        sync = self.server_capabilities.get("textDocumentSync", TextDocumentSyncKind.FULL)
        if isinstance(sync, dict):
            return bool(sync.get("openClose", False))
        return self._sync_kind() != TextDocumentSyncKind.NONE

    def _on_transport_failure(self, error: Exception):
        """Runs on the event queue. The session is unhealthy from here on."""
        self.healthy = False
        self._failure = error
        with self._lock:
            state = self._state
            transport = self._transport
        if state not in (SessionState.STARTING, SessionState.RUNNING):
            return

        client_log.error("SESSION", f"{self.label}: {error}")
        if transport is not None:
            # Fails the pending initialize during startup, skips shutdown when running
            transport.close()
        if state == SessionState.RUNNING:
            self.host.show_error(f"{self.name}: {error}")
            self.stop()

    def _on_diagnostics(self, params: Dict):
        self.host.publish_diagnostics(params.get("uri", ""), params.get("diagnostics", []))

    def _on_show_message(self, params: Dict):
        self.host.show_message(params.get("type", 3), params.get("message", ""))

    def _on_show_message_request(self, params: Dict):
        self.host.show_message(params.get("type", 3), params.get("message", ""))
        return None

    def _on_log_message(self, params: Dict):
        level = _LOG_LEVELS.get(params.get("type", 4), "debug")
        client_log.server_log(self.label, level, params.get("message", ""))


