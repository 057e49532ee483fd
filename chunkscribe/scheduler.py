"""
Bounded fan-out / fan-in of chunk workers.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from .accumulator import ResultAccumulator
from .cancel import CancellationToken, ensure_token
from .errors import Cancelled
from .progress import ProgressDispatcher
from .types import Chunk, ChunkFailure, ChunkOutcome, ChunkSuccess
from .worker import ChunkWorker


logger = logging.getLogger(__name__)


def summarize_output(output) -> str:
    """Short human-readable description of a chunk output."""
    if isinstance(output, (bytes, bytearray)):
        return f"Audio synthesized ({len(output)} bytes)"
    text = str(output)
    return text[:50] + "..." if len(text) > 50 else text


class Scheduler:
    """
    Runs one ChunkWorker per chunk, at most `concurrency` at a time.

    Completion order follows the network, not chunk order. Every chunk
    ends with exactly one outcome in the accumulator. The scheduler never
    retries; that is the worker's job.

    Usage:
        scheduler = Scheduler(worker, concurrency=4, events=dispatcher)
        accumulator = ResultAccumulator(len(chunks))
        scheduler.run(chunks, accumulator, token)
    """

    def __init__(
        self,
        worker: ChunkWorker,
        concurrency: int = 4,
        events: Optional[ProgressDispatcher] = None,
        on_outcome: Optional[Callable[[ChunkOutcome], None]] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.worker = worker
        self.concurrency = concurrency
        self.events = events or ProgressDispatcher()
        self.on_outcome = on_outcome

    def run(
        self,
        chunks: List[Chunk],
        accumulator: ResultAccumulator,
        token: Optional[CancellationToken] = None,
    ) -> None:
        """Process every chunk to a terminal outcome."""
        token = ensure_token(token)
        total = len(chunks)
        if total == 0:
            return

        # Single chunk: no pool, run inline
        if total == 1:
            self.events.emit("chunk_started", chunks[0].index)
            outcome = self._run_one(chunks[0], token)
            self._fan_in(outcome, accumulator, total)
            return

        semaphore = threading.BoundedSemaphore(self.concurrency)
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="chunkscribe-worker") as executor:
            futures = {
                executor.submit(self._run_limited, chunk, token, semaphore): chunk
                for chunk in chunks
            }

            for future in as_completed(futures):
                chunk = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    # Worker bugs still count as this chunk's terminal outcome
                    logger.error("[Chunk %d] Worker crashed: %s", chunk.index, e)
                    outcome = ChunkFailure(index=chunk.index, error=e)
                self._fan_in(outcome, accumulator, total)

    def _run_limited(self, chunk: Chunk, token: CancellationToken, semaphore: threading.BoundedSemaphore) -> ChunkOutcome:
        with semaphore:
            if token.cancelled:
                return ChunkFailure(index=chunk.index, error=Cancelled())
            self.events.emit("chunk_started", chunk.index)
            return self._run_one(chunk, token)

    def _run_one(self, chunk: Chunk, token: CancellationToken) -> ChunkOutcome:
        return self.worker.run(chunk, token)

    def _fan_in(self, outcome: ChunkOutcome, accumulator: ResultAccumulator, total: int) -> None:
        if isinstance(outcome, ChunkSuccess):
            accumulator.record_success(outcome)
        else:
            accumulator.record_failure(outcome.index, outcome.error, outcome.attempts)
        completed = accumulator.increment_and_get_completed_count()

        if isinstance(outcome, ChunkSuccess):
            logger.info("[Scheduler] Chunk %d/%d completed (%d/%d done)", outcome.index + 1, total, completed, total)
            self.events.emit("chunk_completed", outcome.index, summarize_output(outcome.output))
        else:
            logger.info("[Scheduler] Chunk %d/%d failed (%d/%d done)", outcome.index + 1, total, completed, total)
            self.events.emit("chunk_failed", outcome.index, outcome.error, False)
        self.events.emit("progress_updated", completed, total)

        if self.on_outcome is not None:
            self.on_outcome(outcome)
