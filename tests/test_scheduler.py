"""
Tests for bounded fan-out / fan-in scheduling.
"""

import threading
import time
from unittest.mock import Mock

import pytest


class TrackingClient:
    """Fake client that records how many calls overlap."""

    name = "tracking"

    def __init__(self, delay=0.02, fail_payloads=()):
        self.delay = delay
        self.fail_payloads = set(fail_payloads)
        self.active = 0
        self.max_active = 0
        self.calls = []
        self._lock = threading.Lock()

    def initialize(self):
        pass

    def shutdown(self):
        pass

    def invoke(self, payload, model, credential):
        from chunkscribe.errors import InvalidRequest

        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(payload)
        try:
            time.sleep(self.delay)
            if payload in self.fail_payloads:
                raise InvalidRequest(f"cannot process {payload}")
            return f"out-{payload}"
        finally:
            with self._lock:
                self.active -= 1


def make_chunks(count):
    from chunkscribe.types import Chunk
    return [Chunk(index=i, payload=f"c{i}", start=i, end=i + 1) for i in range(count)]


class TestScheduler:
    """Tests for Scheduler."""

    def create_scheduler(self, client, concurrency=3, observer=None, on_outcome=None):
        from chunkscribe.progress import ProgressDispatcher
        from chunkscribe.ratelimit import RateLimitCoordinator
        from chunkscribe.scheduler import Scheduler
        from chunkscribe.worker import ChunkWorker

        events = ProgressDispatcher(observer)
        worker = ChunkWorker(
            client=client,
            coordinator=RateLimitCoordinator(),
            model="m",
            credential="k",
            max_attempts=2,
            base_delay=0.01,
            events=events,
        )
        return Scheduler(worker, concurrency=concurrency, events=events, on_outcome=on_outcome), events

    def test_concurrency_cap(self):
        """Test that in-flight calls never exceed the limit."""
        from chunkscribe.accumulator import ResultAccumulator

        client = TrackingClient(delay=0.03)
        scheduler, _ = self.create_scheduler(client, concurrency=3)
        accumulator = ResultAccumulator(10)

        scheduler.run(make_chunks(10), accumulator)

        assert client.max_active <= 3
        assert client.max_active > 1
        assert [s.index for s in accumulator.successes()] == list(range(10))

    def test_failed_chunk_does_not_block_others(self):
        """Test that chunk 2 failing still lets 0, 1, 3 and 4 complete."""
        from chunkscribe.accumulator import ResultAccumulator
        from chunkscribe.errors import InvalidRequest

        client = TrackingClient(fail_payloads={"c2"})
        scheduler, _ = self.create_scheduler(client, concurrency=2)
        accumulator = ResultAccumulator(5)

        scheduler.run(make_chunks(5), accumulator)

        assert [s.index for s in accumulator.successes()] == [0, 1, 3, 4]
        assert accumulator.failed_indices() == [2]
        assert isinstance(accumulator.errors()[2], InvalidRequest)
        assert client.calls.count("c2") == 1

    def test_every_chunk_gets_one_outcome(self):
        """Test that outcomes recorded equal the number of chunks."""
        from chunkscribe.accumulator import ResultAccumulator

        client = TrackingClient(delay=0.0, fail_payloads={"c1", "c5"})
        scheduler, _ = self.create_scheduler(client, concurrency=4)
        accumulator = ResultAccumulator(8)

        scheduler.run(make_chunks(8), accumulator)

        assert accumulator.recorded_count == 8

    def test_single_chunk_runs_inline(self):
        """Test that one chunk doesn't spin up a pool."""
        from unittest.mock import patch
        from chunkscribe.accumulator import ResultAccumulator

        client = TrackingClient(delay=0.0)
        scheduler, _ = self.create_scheduler(client)
        accumulator = ResultAccumulator(1)

        with patch("chunkscribe.scheduler.ThreadPoolExecutor") as mock_pool:
            scheduler.run(make_chunks(1), accumulator)

        mock_pool.assert_not_called()
        assert accumulator.successes()[0].output == "out-c0"

    def test_progress_events(self):
        """Test chunk_started/completed/failed and progress_updated notifications."""
        from chunkscribe.accumulator import ResultAccumulator

        client = TrackingClient(delay=0.0, fail_payloads={"c1"})
        observer = Mock()
        scheduler, events = self.create_scheduler(client, observer=observer)

        scheduler.run(make_chunks(3), ResultAccumulator(3))
        events.close()

        assert observer.chunk_started.call_count == 3
        assert observer.chunk_completed.call_count == 2
        observer.chunk_completed.assert_any_call(0, "out-c0")
        failed = observer.chunk_failed.call_args
        assert failed.args[0] == 1
        assert failed.args[2] is False
        progress = [c.args for c in observer.progress_updated.call_args_list]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_on_outcome_called_per_chunk(self):
        """Test the outcome hook fires once per chunk."""
        from chunkscribe.accumulator import ResultAccumulator

        on_outcome = Mock()
        scheduler, _ = self.create_scheduler(TrackingClient(delay=0.0), on_outcome=on_outcome)

        scheduler.run(make_chunks(4), ResultAccumulator(4))

        assert sorted(c.args[0].index for c in on_outcome.call_args_list) == [0, 1, 2, 3]

    def test_cancelled_token_cancels_every_chunk(self):
        """Test that cancellation before start yields cancelled outcomes only."""
        from chunkscribe.accumulator import ResultAccumulator
        from chunkscribe.cancel import CancellationToken

        client = TrackingClient()
        scheduler, _ = self.create_scheduler(client)
        accumulator = ResultAccumulator(5)
        token = CancellationToken()
        token.cancel()

        scheduler.run(make_chunks(5), accumulator, token)

        assert accumulator.all_cancelled() is True
        assert accumulator.failed_indices() == [0, 1, 2, 3, 4]
        assert client.calls == []

    def test_worker_crash_recorded_as_failure(self):
        """Test that an exception escaping the worker still produces an outcome."""
        from chunkscribe.accumulator import ResultAccumulator
        from chunkscribe.scheduler import Scheduler
        from chunkscribe.types import ChunkSuccess

        def run(chunk, token):
            if chunk.index == 1:
                raise RuntimeError("worker bug")
            return ChunkSuccess(index=chunk.index, output="ok")

        worker = Mock()
        worker.run.side_effect = run
        accumulator = ResultAccumulator(3)

        Scheduler(worker, concurrency=2).run(make_chunks(3), accumulator)

        assert accumulator.failed_indices() == [1]
        assert isinstance(accumulator.errors()[1], RuntimeError)

    def test_invalid_concurrency(self):
        """Test that concurrency must be at least 1."""
        from chunkscribe.scheduler import Scheduler

        with pytest.raises(ValueError):
            Scheduler(Mock(), concurrency=0)


class TestSummarizeOutput:
    """Tests for summarize_output."""

    def test_audio_summary(self):
        from chunkscribe.scheduler import summarize_output
        assert summarize_output(b"\x00" * 10) == "Audio synthesized (10 bytes)"

    def test_text_truncated(self):
        from chunkscribe.scheduler import summarize_output
        assert summarize_output("a" * 60) == "a" * 50 + "..."
        assert summarize_output("short") == "short"
