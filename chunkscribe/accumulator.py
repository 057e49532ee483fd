"""
Thread-safe collection of per-chunk outcomes.
"""

import threading
from typing import Dict, List

from .types import ChunkFailure, ChunkOutcome, ChunkSuccess


class ResultAccumulator:
    """
    Append-only record of chunk outcomes for one request.

    Exactly one outcome per chunk index; recording a second one is a bug
    in the caller and raises ValueError. Readers return index-sorted copies.
    """

    def __init__(self, total: int = 0):
        self.total = total
        self._successes: List[ChunkSuccess] = []
        self._failures: List[ChunkFailure] = []
        self._recorded: set = set()
        self._completed = 0
        self._lock = threading.Lock()

    def record(self, outcome: ChunkOutcome) -> None:
        if isinstance(outcome, ChunkSuccess):
            self.record_success(outcome)
        else:
            self._append(outcome, self._failures)

    def record_success(self, outcome: ChunkSuccess) -> None:
        self._append(outcome, self._successes)

    def record_failure(self, index: int, error: BaseException, attempts: int = 0) -> None:
        self._append(ChunkFailure(index=index, error=error, attempts=attempts), self._failures)

    def increment_and_get_completed_count(self) -> int:
        with self._lock:
            self._completed += 1
            return self._completed

    def successes(self) -> List[ChunkSuccess]:
        with self._lock:
            return sorted(self._successes, key=lambda o: o.index)

    def failures(self) -> List[ChunkFailure]:
        with self._lock:
            return sorted(self._failures, key=lambda o: o.index)

    def failed_indices(self) -> List[int]:
        return [f.index for f in self.failures()]

    def errors(self) -> Dict[int, BaseException]:
        return {f.index: f.error for f in self.failures()}

    def all_cancelled(self) -> bool:
        """True when there are failures and every one of them is a cancellation."""
        failures = self.failures()
        return bool(failures) and all(f.cancelled for f in failures)

    @property
    def recorded_count(self) -> int:
        with self._lock:
            return len(self._recorded)

    def _append(self, outcome: ChunkOutcome, target: list) -> None:
        with self._lock:
            if outcome.index in self._recorded:
                raise ValueError(f"Outcome for chunk {outcome.index} already recorded")
            self._recorded.add(outcome.index)
            target.append(outcome)
