"""
Serialised event queue - one worker thread per session.
"""

import logging
import queue
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

_STOP = object()


class EventQueue:
    """
    Runs posted callables one at a time, in order, on a dedicated thread.

    Everything that reacts to server traffic or host filesystem events goes
    through here, so no two of them run concurrently for the same session.
    """

    def __init__(self, name: str):
        self.name = name
        self._queue: queue.Queue = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def post(self, fn: Callable[[], None]):
        """Schedule fn. Work posted after close() is discarded."""
        if self._closed:
            logger.debug(f"Event queue {self.name} closed, discarding event")
            return
        self._queue.put(fn)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Block until everything posted so far has run."""
        if self._closed or self.is_current_thread():
            return True
        done = threading.Event()
        self._queue.put(done.set)
        return done.wait(timeout)

    def is_current_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def close(self, timeout: float = 5.0):
        """Stop the worker after the events already queued have run."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        if not self.is_current_thread():
            self._thread.join(timeout)

    def _run(self):
        while True:
            fn = self._queue.get()
            if fn is _STOP:
                return
            try:
                fn()
            except Exception:
                logger.exception(f"Unhandled error in {self.name} event")
