"""
Thread-safe pipeline telemetry with batched JSONL writes.

Usage:
    metrics = MetricsWriter(Path("~/.chunkscribe/metrics.jsonl").expanduser())
    metrics.log("chunk_outcome", request_id="...", index=3, success=True)
"""

import json
import logging
import threading
import time
from pathlib import Path
from queue import Empty, Queue
from typing import Any, List

from .types import ChunkOutcome, ChunkSuccess


logger = logging.getLogger(__name__)


class MetricsWriter:
    """
    Thread-safe metrics writer with atomic appends.
    Uses a queue to batch writes from worker threads.
    """

    def __init__(self, metrics_file: Path):
        self.metrics_file = metrics_file
        self._queue: "Queue[dict]" = Queue()
        self._shutdown = threading.Event()
        self._writer_thread = threading.Thread(target=self._writer_loop, daemon=True)
        self._writer_thread.start()

    def log(self, event: str, **kwargs: Any) -> None:
        """
        Queue a metric for writing. Non-blocking.

        Args:
            event: Event name (e.g., "request_start", "chunk_outcome")
            **kwargs: Additional fields to log
        """
        entry = {
            "ts": time.time(),
            "event": event,
            **kwargs
        }
        self._queue.put(entry)

    def _writer_loop(self) -> None:
        """Background thread that batches and writes metrics."""
        while not self._shutdown.is_set():
            try:
                entries = [self._queue.get(timeout=0.5)]
            except Empty:
                continue
            entries.extend(self._drain())
            self._write_entries(entries)

    def _drain(self) -> List[dict]:
        entries = []
        while True:
            try:
                entries.append(self._queue.get_nowait())
            except Empty:
                return entries

    def _write_entries(self, entries: List[dict]) -> None:
        """Append entries to the metrics file."""
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.metrics_file, "a") as f:
                for entry in entries:
                    f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            logger.error("[Metrics] Failed to write metrics: %s", e)

    def flush(self) -> None:
        """Write any queued metrics now."""
        entries = self._drain()
        if entries:
            self._write_entries(entries)

    def shutdown(self) -> None:
        """Stop the writer thread and flush what's left."""
        self._shutdown.set()
        self._writer_thread.join(timeout=2.0)
        self.flush()


# Typed helpers for consistent event logging

def log_request_start(metrics: MetricsWriter, request_id: str, variant: str, total_chunks: int) -> None:
    metrics.log("request_start", request_id=request_id, variant=variant, total_chunks=total_chunks)


def log_chunk_outcome(metrics: MetricsWriter, request_id: str, outcome: ChunkOutcome) -> None:
    if isinstance(outcome, ChunkSuccess):
        metrics.log(
            "chunk_outcome",
            request_id=request_id,
            index=outcome.index,
            success=True,
            attempts=outcome.attempts,
            output_size=len(outcome.output),
        )
    else:
        metrics.log(
            "chunk_outcome",
            request_id=request_id,
            index=outcome.index,
            success=False,
            attempts=outcome.attempts,
            error=type(outcome.error).__name__,
            detail=str(outcome.error)[:200],
            cancelled=outcome.cancelled,
        )


def log_rate_limited(metrics: MetricsWriter, name: str, wait_seconds: float) -> None:
    metrics.log("rate_limited", coordinator=name, wait_seconds=round(wait_seconds, 3))


def log_request_complete(
    metrics: MetricsWriter,
    request_id: str,
    total_chunks: int,
    failed_indices: List[int],
    duration_ms: float,
    status: str,
) -> None:
    metrics.log(
        "request_complete",
        request_id=request_id,
        total_chunks=total_chunks,
        failed_indices=failed_indices,
        duration_ms=round(duration_ms, 1),
        status=status,
    )
