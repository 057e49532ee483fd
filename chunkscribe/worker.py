"""
Per-chunk retry loop.

A ChunkWorker runs one chunk through the inference client, consulting
the shared rate limit coordinator before every attempt. Chunk-local
errors never escape run(); they come back as a ChunkFailure.
"""

import logging
import time
from typing import Optional

from .cancel import CancellationToken, ensure_token
from .errors import RATE_LIMIT_ERRORS, Cancelled, InferenceError
from .progress import ProgressDispatcher
from .providers import InferenceClient
from .ratelimit import RateLimitCoordinator
from .types import Chunk, ChunkFailure, ChunkOutcome, ChunkSuccess


logger = logging.getLogger(__name__)


class ChunkWorker:
    """
    Executes one chunk with bounded retries.

    Per attempt:
    - wait out any shared rate limit pause
    - bail out if cancelled (without consuming an attempt)
    - call the API
    - on rate limit: push the shared pause forward and retry after it,
      backing off locally as well when the server gave no retry hint
    - on non-retryable error: give up immediately
    - otherwise back off exponentially and retry
    """

    def __init__(
        self,
        client: InferenceClient,
        coordinator: RateLimitCoordinator,
        model: str,
        credential: str,
        max_attempts: int = 5,
        base_delay: float = 1.5,
        events: Optional[ProgressDispatcher] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.coordinator = coordinator
        self.model = model
        self.credential = credential
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.events = events or ProgressDispatcher()

    def run(self, chunk: Chunk, token: Optional[CancellationToken] = None) -> ChunkOutcome:
        """
        Process one chunk to a terminal outcome.

        Returns:
            ChunkSuccess, or ChunkFailure carrying the last error
            (a Cancelled error if the token fired)
        """
        token = ensure_token(token)
        last_error: Optional[BaseException] = None
        attempt = 0

        try:
            while attempt < self.max_attempts:
                self.coordinator.wait_if_needed(token)
                token.raise_if_cancelled()
                attempt += 1

                if attempt > 1:
                    logger.info("[Chunk %d] Attempt %d/%d", chunk.index, attempt, self.max_attempts)
                    self.events.emit("chunk_failed", chunk.index, last_error, True)
                    self.events.emit("chunk_started", chunk.index)

                start = time.time()
                try:
                    output = self.client.invoke(chunk.payload, self.model, self.credential)
                except Cancelled:
                    raise
                except Exception as e:
                    last_error = e
                    if not self._should_retry(chunk, e, attempt, token):
                        break
                    continue

                self.coordinator.report_success()
                latency_ms = int((time.time() - start) * 1000)
                logger.info("[Chunk %d] Done in %.2fs (attempt %d)", chunk.index, latency_ms / 1000, attempt)
                return ChunkSuccess(index=chunk.index, output=output, attempts=attempt)

        except Cancelled as e:
            logger.info("[Chunk %d] Cancelled after %d attempt(s)", chunk.index, attempt)
            return ChunkFailure(index=chunk.index, error=e, attempts=attempt)

        logger.error("[Chunk %d] Giving up after %d attempt(s): %s", chunk.index, attempt, last_error)
        return ChunkFailure(index=chunk.index, error=last_error, attempts=attempt)

    def _should_retry(
        self,
        chunk: Chunk,
        error: Exception,
        attempt: int,
        token: CancellationToken,
    ) -> bool:
        """
        Decide what happens after a failed attempt, sleeping if needed.

        Raises:
            Cancelled: if cancelled during the backoff sleep
        """
        attempts_left = attempt < self.max_attempts

        if isinstance(error, RATE_LIMIT_ERRORS):
            # Pause everyone; a hinted delay comes from the coordinator wait
            self.coordinator.report_rate_limited(error.retry_after)
            if not attempts_left:
                return False
            if error.retry_after is None:
                delay = self.base_delay * 2 ** (attempt - 1)
                logger.warning("[Chunk %d] Hit rate limit, retrying in %.1fs", chunk.index, delay)
                token.sleep(delay)
            else:
                logger.warning("[Chunk %d] Hit rate limit, retrying after shared pause", chunk.index)
            return True

        if isinstance(error, InferenceError) and not error.retryable:
            logger.error("[Chunk %d] Non-retryable error: %s", chunk.index, error)
            return False

        if not attempts_left:
            return False

        retry_after = getattr(error, "retry_after", None)
        delay = retry_after if retry_after is not None else self.base_delay * 2 ** (attempt - 1)
        logger.warning("[Chunk %d] Failed (%s), retrying in %.1fs", chunk.index, error, delay)
        token.sleep(delay)
        return True
