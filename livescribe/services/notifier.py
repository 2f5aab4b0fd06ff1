"""Ordered delivery of caller callbacks on a dedicated thread."""

import logging
import queue
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CallbackRelay:
    """Runs posted callbacks one at a time, in post order, on its own thread.

    Capture, dispatch and timer threads post here instead of calling user code
    directly, so a callback that calls ``stop()`` never blocks the thread that
    finalization is waiting on.
    """

    def __init__(self, name: str):
        self.name = name
        self.task_queue: "queue.Queue[Optional[tuple]]" = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.name = name
        self.thread.start()

    def post(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        with self._lock:
            if self._closed:
                logger.debug(f"[{self.name}] Dropping callback posted after close")
                return
            self.task_queue.put((callback, args))

    def close(self) -> None:
        """Deliver what is queued, then let the thread exit. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.task_queue.put(None)

    def is_current_thread(self) -> bool:
        return threading.current_thread() is self.thread

    def join(self, timeout: Optional[float] = None) -> None:
        if not self.is_current_thread():
            self.thread.join(timeout)

    def _run(self) -> None:
        while True:
            item = self.task_queue.get()
            if item is None:
                break
            callback, args = item
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"[{self.name}] Error in callback "
                             f"{getattr(callback, '__name__', callback)}: {e}", exc_info=True)
