"""Polling, cancellation and clocks."""

import pytest

from token_bridge.clock import CancelToken, SystemClock, poll_until
from token_bridge.errors import OperationCancelled
from token_bridge.testing import FakeClock


def test_poll_until_returns_first_result():
    """Polling stops at the first non-None value."""
    clock = FakeClock()
    answers = iter([None, None, "found"])
    result = poll_until(lambda: next(answers), clock=clock, interval=2.0)
    assert result == "found"
    assert clock.sleeps == [2.0, 2.0]


def test_poll_until_timeout_clips_last_sleep():
    """The last sleep ends exactly at the timeout."""
    clock = FakeClock()
    attempts = []

    def _check():
        attempts.append(clock.time())
        return None

    assert poll_until(_check, clock=clock, interval=2.0, timeout=5.0) is None
    assert attempts == [0.0, 2.0, 4.0, 5.0]
    assert clock.sleeps == [2.0, 2.0, 1.0]


def test_poll_until_cancelled_before_start():
    """A cancelled token stops the loop before any attempt."""
    cancel = CancelToken()
    cancel.cancel()
    attempts = []
    with pytest.raises(OperationCancelled):
        poll_until(lambda: attempts.append(1), clock=FakeClock(), interval=1.0, cancel=cancel)
    assert attempts == []


def test_poll_until_deadline():
    """Without a timeout, a deadline ends the loop."""
    clock = FakeClock()
    cancel = CancelToken.with_timeout(clock, 3.0)
    with pytest.raises(OperationCancelled, match="deadline"):
        poll_until(lambda: None, clock=clock, interval=1.0, cancel=cancel)
    assert clock.time() == pytest.approx(3.0)


def test_poll_until_interval_must_be_positive():
    with pytest.raises(AssertionError):
        poll_until(lambda: None, clock=FakeClock(), interval=0)


def test_cancel_token_expiry():
    clock = FakeClock(now=10.0)
    cancel = CancelToken.with_timeout(clock, 5.0)
    assert cancel.deadline == 15.0
    assert not cancel.is_expired(14.9)
    assert cancel.is_expired(15.0)
    assert not cancel.cancelled

    cancel.cancel()
    assert cancel.cancelled
    assert cancel.is_expired(0)


def test_system_clock_sleep_wakes_on_cancel():
    """A cancelled token makes the real clock return at once."""
    clock = SystemClock()
    cancel = CancelToken()
    cancel.cancel()
    started = clock.time()
    with pytest.raises(OperationCancelled):
        clock.sleep(30, cancel)
    assert clock.time() - started < 5


def test_system_clock_sleep_clipped_to_deadline():
    """Sleeping past a deadline stops at the deadline."""
    clock = SystemClock()
    cancel = CancelToken(deadline=clock.time() + 0.01)
    with pytest.raises(OperationCancelled):
        clock.sleep(30, cancel)


def test_system_clock_is_monotonic():
    clock = SystemClock()
    first = clock.time()
    clock.sleep(0.001)
    assert clock.time() >= first
