"""
Tests for the shared rate limit coordinator.
"""

import threading
import time
from unittest.mock import Mock

import pytest


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestRateLimitCoordinator:
    """Tests for RateLimitCoordinator."""

    def create(self, clock=None, **kwargs):
        from chunkscribe.ratelimit import RateLimitCoordinator

        kwargs.setdefault("retry_after_buffer", 2.0)
        kwargs.setdefault("backoff_base", 30.0)
        kwargs.setdefault("backoff_cap", 120.0)
        if clock is not None:
            kwargs["clock"] = clock
        return RateLimitCoordinator(name="Test", **kwargs)

    def test_retry_after_adds_buffer(self):
        """Test that retry_after=10 pauses until at least now + 12."""
        clock = FakeClock()
        coordinator = self.create(clock)

        delay = coordinator.report_rate_limited(10.0)

        assert delay == 12.0
        assert coordinator.state().pause_until >= clock.now + 12.0
        assert coordinator.is_paused() is True

    def test_other_worker_waits_out_pause(self):
        """Test that a request at now + 5 waits until the deadline before proceeding."""
        clock = FakeClock()
        coordinator = self.create(clock)
        coordinator.report_rate_limited(10.0)
        deadline = coordinator.state().pause_until

        clock.advance(5.0)
        slept = []

        def fake_sleep(seconds, token):
            slept.append(seconds)
            clock.advance(seconds)

        coordinator._sleep = fake_sleep
        waited = coordinator.wait_if_needed()

        assert slept == [pytest.approx(7.0)]
        assert waited == pytest.approx(7.0)
        assert clock.now >= deadline

    def test_pause_deadline_never_moves_backwards(self):
        """Test that a shorter hint doesn't shorten an active pause."""
        clock = FakeClock()
        coordinator = self.create(clock)

        coordinator.report_rate_limited(60.0)
        coordinator.report_rate_limited(1.0)

        assert coordinator.state().pause_until == clock.now + 62.0

    def test_exponential_backoff_without_hint(self):
        """Test 30s, 60s, 120s, then capped."""
        coordinator = self.create(FakeClock())

        delays = [coordinator.report_rate_limited() for _ in range(4)]

        assert delays == [30.0, 60.0, 120.0, 120.0]
        assert coordinator.state().consecutive_limit_hits == 4

    def test_success_resets_backoff_but_not_deadline(self):
        """Test that report_success resets the hit counter only."""
        coordinator = self.create(FakeClock())
        coordinator.report_rate_limited()
        coordinator.report_rate_limited()
        deadline = coordinator.state().pause_until

        coordinator.report_success()

        assert coordinator.state().consecutive_limit_hits == 0
        assert coordinator.state().pause_until == deadline
        assert coordinator.report_rate_limited() == 30.0

    def test_no_wait_when_not_paused(self):
        """Test that wait_if_needed returns immediately without notifying."""
        on_waiting = Mock()
        on_resolved = Mock()
        coordinator = self.create(on_waiting=on_waiting, on_resolved=on_resolved)

        assert coordinator.wait_if_needed() == 0.0
        on_waiting.assert_not_called()
        on_resolved.assert_not_called()

    def test_waiters_block_and_notify_once(self):
        """Test that many waiters share one waiting/resolved notification."""
        on_waiting = Mock()
        on_resolved = Mock()
        coordinator = self.create(retry_after_buffer=0.0, on_waiting=on_waiting, on_resolved=on_resolved)

        coordinator.report_rate_limited(0.2)
        start = time.monotonic()

        threads = [threading.Thread(target=coordinator.wait_if_needed) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert time.monotonic() - start >= 0.15
        assert on_waiting.call_count == 1
        assert on_resolved.call_count == 1
        assert coordinator.state().notification_active is False

    def test_new_period_notifies_again(self):
        """Test that a second pause after resolution notifies again."""
        on_waiting = Mock()
        on_resolved = Mock()
        coordinator = self.create(retry_after_buffer=0.0, on_waiting=on_waiting, on_resolved=on_resolved)

        for _ in range(2):
            coordinator.report_rate_limited(0.05)
            coordinator.wait_if_needed()

        assert on_waiting.call_count == 2
        assert on_resolved.call_count == 2

    def test_callback_errors_are_contained(self):
        """Test that a failing observer doesn't break waiting."""
        coordinator = self.create(
            retry_after_buffer=0.0,
            on_waiting=Mock(side_effect=RuntimeError("boom")),
        )
        coordinator.report_rate_limited(0.05)

        assert coordinator.wait_if_needed() > 0

    def test_cancel_interrupts_wait(self):
        """Test that cancelling the token ends a long wait early."""
        from chunkscribe.cancel import CancellationToken
        from chunkscribe.errors import Cancelled

        coordinator = self.create(retry_after_buffer=0.0)
        coordinator.report_rate_limited(30.0)
        token = CancellationToken()

        threading.Timer(0.05, token.cancel).start()
        start = time.monotonic()
        with pytest.raises(Cancelled):
            coordinator.wait_if_needed(token)

        assert time.monotonic() - start < 5.0

    def test_cancelled_token_raises_before_waiting(self):
        """Test that an already-cancelled token raises even without a pause."""
        from chunkscribe.cancel import CancellationToken
        from chunkscribe.errors import Cancelled

        coordinator = self.create()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(Cancelled):
            coordinator.wait_if_needed(token)
