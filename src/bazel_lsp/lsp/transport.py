"""
Session Transport - JSON-RPC request/response correlation over a byte stream.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, IO, List, Optional, Tuple

from bazel_lsp.lsp.errors import (
    CancelledRequest,
    ProtocolError,
    ResponseError,
    TransportClosed,
)
from bazel_lsp.lsp.protocol import LSPErrorCodes, LSPMessage, MessageFramer

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[Any], None]
RequestHandler = Callable[[Any], Any]
Dispatch = Callable[[Callable[[], None]], None]


def _call_now(fn: Callable[[], None]):
    fn()


class SessionTransport:
    """
    JSON-RPC endpoint over a duplex byte stream.

    Manages:
    - Framing outgoing messages and deframing incoming bytes
    - Request/response correlation via monotonically increasing ids
    - Routing server notifications and requests to registered handlers

    Responses resolve futures on the reader thread. Notifications, server
    requests and failures are handed to `dispatch`, which the session points
    at its serialised event queue.
    """

    def __init__(
        self,
        reader: IO[bytes],
        writer: IO[bytes],
        dispatch: Optional[Dispatch] = None,
        on_failure: Optional[Callable[[Exception], None]] = None,
        name: str = "lsp",
    ):
        self._reader = reader
        self._writer = writer
        self._dispatch = dispatch or _call_now
        self._on_failure = on_failure
        self.name = name

        self._request_id = 0
        self._pending: Dict[int, Tuple[str, Future]] = {}
        self._notification_handlers: Dict[str, NotificationHandler] = {}
        self._request_handlers: Dict[str, RequestHandler] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.RLock()
        self._closed = False
        self._reader_thread: Optional[threading.Thread] = None

    def start(self):
        """Start the background reader thread."""
        self._reader_thread = threading.Thread(
            target=self._read_loop, name=f"{self.name}-reader", daemon=True
        )
        self._reader_thread.start()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def send_request(self, method: str, params: Optional[Any] = None) -> Future:
        """
        Send a request and return a Future for its result.

        The future fails with ResponseError for an error response and with
        CancelledRequest if the transport closes first.
        """
        future: Future = Future()
        # Ids are allocated under the write lock so they hit the wire in order
        with self._write_lock:
            with self._lock:
                if self._closed:
                    raise TransportClosed(f"Cannot send {method}: transport closed")
                self._request_id += 1
                request_id = self._request_id
                self._pending[request_id] = (method, future)

            logger.debug(f"--> request {request_id} {method}")
            try:
                self._write(LSPMessage.request(method, params, request_id))
            except TransportClosed:
                with self._lock:
                    self._pending.pop(request_id, None)
                raise
        return future

    def send_notification(self, method: str, params: Optional[Any] = None):
        """Send notification (no response expected)."""
        if self._closed:
            raise TransportClosed(f"Cannot send {method}: transport closed")
        logger.debug(f"--> notification {method}")
        self._write(LSPMessage.notification(method, params))

    def on_notification(self, method: str, handler: NotificationHandler):
        self._notification_handlers[method] = handler

    def on_request(self, method: str, handler: RequestHandler):
        """Answer server-to-client requests for `method` with handler(params)."""
        self._request_handlers[method] = handler

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self) -> List[int]:
        """
        Close the transport, failing every pending request with CancelledRequest.

        Returns:
            Ids of the requests that were cancelled
        """
        with self._lock:
            self._closed = True
        return self.cancel_pending()

    def cancel_pending(self) -> List[int]:
        """Fail outstanding requests without closing the transport."""
        with self._lock:
            pending = self._pending
            self._pending = {}

        for request_id, (method, future) in pending.items():
            if not future.done():
                future.set_exception(CancelledRequest(method, request_id))
        if pending:
            logger.info(f"Cancelled {len(pending)} pending request(s)")
        return list(pending)

    # --- Internal methods ---

    def _write(self, message: Dict):
        data = LSPMessage.encode(message)
        with self._write_lock:
            try:
                self._writer.write(data)
                self._writer.flush()
            except (BrokenPipeError, OSError, ValueError) as e:
                raise TransportClosed(f"Failed to write to server: {e}") from e

    def _read_loop(self):
        """Background thread to read server messages."""
        framer = MessageFramer()
        read = getattr(self._reader, "read1", self._reader.read)

        while not self._closed:
            try:
                chunk = read(4096)
            except (OSError, ValueError) as e:
                if not self._closed:
                    self._fail(ProtocolError(f"Error reading from server: {e}"))
                return

            if not chunk:
                if not self._closed:
                    self._fail(ProtocolError("Server closed its output stream"))
                return

            try:
                for message in framer.feed(chunk):
                    self._handle_message(message)
            except ProtocolError as e:
                self._fail(e)
                return
            except Exception as e:
                logger.exception("Unexpected error handling server message")
                self._fail(ProtocolError(f"Unhandled server message: {e}"))
                return

    def _fail(self, error: Exception):
        logger.debug(f"Transport failure: {error}")
        if self._on_failure is not None:
            self._dispatch(lambda: self._on_failure(error))

    def _handle_message(self, message: Dict):
        """Route one incoming message."""
        if "method" in message:
            if "id" in message:
                self._dispatch(lambda: self._handle_server_request(message))
            else:
                self._dispatch(lambda: self._handle_notification(message))
            return

        if "id" not in message:
            raise ProtocolError(f"Message is neither request, response nor notification: {message}")

        self._handle_response(message)

    def _handle_response(self, message: Dict):
        request_id = message["id"]
        # bool is an int subclass but never a valid id
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            raise ProtocolError(f"Response for unknown request id {request_id!r}")
        error = message.get("error")
        if error is not None and not isinstance(error, dict):
            raise ProtocolError(f"Malformed error in response {request_id}: {error!r}")

        with self._lock:
            entry = self._pending.pop(request_id, None)
            issued = 0 < request_id <= self._request_id

        if entry is None:
            if not issued:
                raise ProtocolError(f"Response for unknown request id {request_id!r}")
            # Late answer to a request that was already cancelled
            logger.debug(f"Ignoring response for settled request {request_id}")
            return

        method, future = entry
        logger.debug(f"<-- response {request_id} {method}")
        if future.done():
            return
        if error is not None:
            future.set_exception(
                ResponseError(
                    error.get("code", LSPErrorCodes.UnknownErrorCode),
                    error.get("message", ""),
                    error.get("data"),
                )
            )
        else:
            future.set_result(message.get("result"))

    def _handle_notification(self, message: Dict):
        method = message["method"]
        logger.debug(f"<-- notification {method}")
        handler = self._notification_handlers.get(method)
        if handler is None:
            return
        try:
            handler(message.get("params"))
        except Exception:
            logger.exception(f"Notification handler for {method} failed")

    def _handle_server_request(self, message: Dict):
        method = message["method"]
        request_id = message["id"]
        logger.debug(f"<-- server request {request_id} {method}")
        handler = self._request_handlers.get(method)

        if handler is None:
            reply = LSPMessage.error_response(
                request_id, LSPErrorCodes.MethodNotFound, f"Unhandled method {method}"
            )
        else:
            try:
                reply = LSPMessage.response(request_id, handler(message.get("params")))
            except Exception as e:
                logger.exception(f"Request handler for {method} failed")
                reply = LSPMessage.error_response(request_id, LSPErrorCodes.InternalError, str(e))

        if self._closed:
            return
        try:
            self._write(reply)
        except TransportClosed as e:
            logger.warning(f"Could not answer server request {method}: {e}")
