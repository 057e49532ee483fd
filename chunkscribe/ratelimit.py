"""
Rate limit coordination across parallel chunk requests.

When one chunk hits a 429, every chunk pauses together instead of each
hammering the API on its own schedule.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .cancel import CancellationToken
from .errors import Cancelled
from .types import RateLimitState


logger = logging.getLogger(__name__)


class RateLimitCoordinator:
    """
    Shared pause deadline for all workers of a pipeline.

    Thread-safe: every read-modify-write happens under one lock.
    pause_until only moves forward. Each pause period notifies at most
    once on entry (on_waiting) and once on exit (on_resolved), no matter
    how many workers are waiting on it.
    """

    def __init__(
        self,
        name: str = "RateLimit",
        retry_after_buffer: float = 2.0,
        backoff_base: float = 30.0,
        backoff_cap: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
        on_waiting: Optional[Callable[[float], None]] = None,
        on_resolved: Optional[Callable[[], None]] = None,
    ):
        self.name = name
        self.retry_after_buffer = retry_after_buffer
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.on_waiting = on_waiting
        self.on_resolved = on_resolved
        self._clock = clock
        self._lock = threading.Lock()

        self._pause_until = 0.0
        self._consecutive_hits = 0
        # Pause periods are numbered; notifications are tracked per period
        self._period = 0
        self._waiting_notified = 0
        self._resolved_notified = 0

    def wait_if_needed(self, token: Optional[CancellationToken] = None) -> float:
        """
        Block the calling thread while a pause is active.

        Args:
            token: Cancellation token; cancel() ends the wait early

        Returns:
            Seconds spent waiting (0.0 when no pause was active)

        Raises:
            Cancelled: if the token is cancelled before or during the wait
        """
        if token is not None:
            token.raise_if_cancelled()

        waited = 0.0
        period = None
        while True:
            notify_waiting = False
            with self._lock:
                remaining = self._pause_until - self._clock()
                if remaining <= 0:
                    break
                period = self._period
                if self._waiting_notified != period:
                    self._waiting_notified = period
                    notify_waiting = True

            if notify_waiting:
                logger.warning("[%s] Waiting %.1fs before next request", self.name, remaining)
                self._notify(self.on_waiting, remaining)

            self._sleep(remaining, token)
            waited += remaining

        if period is not None:
            self._resolve(period)
        return waited

    def report_rate_limited(self, retry_after: Optional[float] = None) -> float:
        """
        Record a rate limit hit and push the shared deadline forward.

        Args:
            retry_after: Server-provided delay in seconds, if any

        Returns:
            The delay that was applied (from now)
        """
        with self._lock:
            self._consecutive_hits += 1

            if retry_after is not None:
                delay = retry_after + self.retry_after_buffer
                logger.info("[%s] API requested %.1fs delay, using %.1fs", self.name, retry_after, delay)
            else:
                delay = min(self.backoff_base * 2 ** (self._consecutive_hits - 1), self.backoff_cap)
                logger.info("[%s] No API delay, using exponential backoff: %.1fs", self.name, delay)

            new_pause_until = self._clock() + delay
            if new_pause_until > self._pause_until:
                self._pause_until = new_pause_until
                self._period += 1  # re-arm notifications for the new period
                logger.warning("[%s] All requests paused for %.1fs", self.name, delay)

        return delay

    def report_success(self) -> None:
        """Reset the consecutive hit counter. The pause deadline is left alone."""
        with self._lock:
            if self._consecutive_hits > 0:
                logger.info("[%s] Request succeeded, resetting rate limit counter", self.name)
                self._consecutive_hits = 0

    def is_paused(self) -> bool:
        with self._lock:
            return self._pause_until > self._clock()

    def state(self) -> RateLimitState:
        with self._lock:
            return RateLimitState(
                pause_until=self._pause_until,
                consecutive_limit_hits=self._consecutive_hits,
                notification_active=(
                    self._waiting_notified == self._period and self._resolved_notified != self._period
                ),
            )

    def _resolve(self, period: int) -> None:
        with self._lock:
            # Another pause started while we slept; whoever waits on it resolves it
            if self._pause_until > self._clock():
                return
            if self._waiting_notified != period or self._resolved_notified == period:
                return
            self._resolved_notified = period

        logger.info("[%s] Pause over, resuming requests", self.name)
        self._notify(self.on_resolved)

    def _sleep(self, seconds: float, token: Optional[CancellationToken]) -> None:
        if token is None:
            time.sleep(seconds)
            return
        try:
            token.sleep(seconds)
        except Cancelled:
            logger.info("[%s] Wait cancelled", self.name)
            raise

    def _notify(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error("[%s] Notification callback failed: %s", self.name, e)
