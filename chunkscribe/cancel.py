"""
Cooperative cancellation shared by every suspension point of a request.
"""

import threading
from typing import Optional

from .errors import Cancelled


class CancellationToken:
    """
    Thread-safe cancel flag.

    Waits go through the token so that cancel() wakes every sleeper
    immediately instead of at the end of its backoff.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()

    def sleep(self, seconds: float) -> None:
        """Sleep up to `seconds`; raise Cancelled if cancelled before or during."""
        self.raise_if_cancelled()
        if seconds > 0 and self._event.wait(timeout=seconds):
            raise Cancelled()


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    return token if token is not None else CancellationToken()
