"""
Progress reporting for chunked requests.

Observers implement whichever callbacks they care about. The dispatcher
delivers every callback on one dedicated thread, in the order events were
emitted, so observers never see calls from pool threads directly.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional


logger = logging.getLogger(__name__)


class ProgressObserver:
    """
    Receives progress updates during chunked processing.

    All methods are no-ops; subclass and override what you need.
    """

    def chunking_started(self, total_chunks: int) -> None:
        """Called once segmentation is done, before any chunk is sent."""

    def chunk_started(self, index: int) -> None:
        """Called when a chunk begins processing (again on each retry)."""

    def chunk_completed(self, index: int, output_summary: str) -> None:
        """Called when a chunk succeeded."""

    def chunk_failed(self, index: int, error: BaseException, will_retry: bool) -> None:
        """Called on each failed attempt (will_retry=True) and on terminal failure."""

    def progress_updated(self, completed: int, total: int) -> None:
        """Called after each chunk reaches a terminal outcome."""

    def merging_started(self) -> None:
        """Called when all chunks are done and merging begins."""

    def rate_limit_waiting(self, seconds: float) -> None:
        """Called once when requests start waiting out a rate limit pause."""

    def rate_limit_resolved(self) -> None:
        """Called once when a rate limit pause is over."""


EVENTS = frozenset(
    name for name in vars(ProgressObserver) if not name.startswith("_")
)


class ProgressDispatcher:
    """
    Serializes observer callbacks onto a single thread.

    Usage:
        dispatcher = ProgressDispatcher(observer)
        dispatcher.emit("chunk_started", 3)
        dispatcher.flush()   # wait until delivered
        dispatcher.close()
    """

    def __init__(self, observer: Optional[Any] = None):
        self.observer = observer
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._closed = False

    def emit(self, event: str, *args: Any) -> None:
        """Queue a callback. Non-blocking; silently skipped without an observer."""
        if event not in EVENTS:
            raise ValueError(f"Unknown progress event: {event}")
        if self.observer is None:
            return

        callback = getattr(self.observer, event, None)
        if callback is None:
            return

        with self._lock:
            if self._closed:
                logger.debug("[Progress] Dropping %s after close", event)
                return
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chunkscribe-progress")
            self._executor.submit(self._deliver, event, callback, args)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued callback has run."""
        with self._lock:
            executor = self._executor
            if executor is None or self._closed:
                return
            marker = executor.submit(lambda: None)
        marker.result(timeout=timeout)

    def close(self) -> None:
        """Deliver what's queued, then stop the delivery thread."""
        with self._lock:
            self._closed = True
            executor = self._executor
            self._executor = None
        if executor is not None:
            executor.shutdown(wait=True)

    @staticmethod
    def _deliver(event: str, callback, args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error("[Progress] Observer %s failed: %s", event, e)
