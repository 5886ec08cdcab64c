"""Time, sleeping and cancellation for the polling loops.

All waiting in the orchestrators goes through a :py:class:`Clock` so
tests can use :py:class:`~token_bridge.testing.FakeClock` and simulate
elapsed time without sleeping.

A :py:class:`CancelToken` aborts waits promptly, either when
:py:meth:`CancelToken.cancel` is called from another thread or when its
deadline passes.
"""

import abc
import logging
import threading
import time
from typing import Callable, TypeVar

from token_bridge.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """External cancellation signal for a suspending operation.

    Example::

        cancel = CancelToken.with_timeout(clock, 600)
        threading.Timer(10, cancel.cancel).start()
        attestation.poll_for_registration(cancel=cancel)
    """

    def __init__(self, deadline: float | None = None):
        """
        :param deadline:
            Absolute deadline in :py:meth:`Clock.time` units, or ``None``.
        """
        self.deadline = deadline
        self._event = threading.Event()

    def __repr__(self) -> str:
        return f"<CancelToken cancelled={self.cancelled} deadline={self.deadline}>"

    @classmethod
    def with_timeout(cls, clock: "Clock", seconds: float) -> "CancelToken":
        """Create a token that expires ``seconds`` from now."""
        return cls(deadline=clock.time() + seconds)

    def cancel(self):
        """Cancel. Safe to call from any thread."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def is_expired(self, now: float) -> bool:
        return self.cancelled or (self.deadline is not None and now >= self.deadline)

    def check(self, now: float):
        """Raise if cancelled or past the deadline.

        :raises OperationCancelled:
        """
        if self.cancelled:
            raise OperationCancelled("Operation cancelled")
        if self.deadline is not None and now >= self.deadline:
            raise OperationCancelled(f"Operation deadline passed at {self.deadline:.1f}")

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``, waking early on cancel.

        :return:
            ``True`` if cancelled.
        """
        return self._event.wait(seconds)


class Clock(abc.ABC):
    """Time source and sleeper."""

    @abc.abstractmethod
    def time(self) -> float:
        """Monotonic time in seconds."""

    @abc.abstractmethod
    def sleep(self, seconds: float, cancel: CancelToken | None = None):
        """Sleep, waking early and raising :py:class:`OperationCancelled` if ``cancel`` fires."""


class SystemClock(Clock):
    """Wall clock backed by :py:func:`time.monotonic`."""

    def time(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: CancelToken | None = None):
        if cancel is None:
            time.sleep(seconds)
            return

        if cancel.deadline is not None:
            seconds = min(seconds, max(0.0, cancel.deadline - self.time()))

        cancel.wait(seconds)
        cancel.check(self.time())


def poll_until(
    check: Callable[[], T | None],
    clock: Clock,
    interval: float,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
    description: str = "result",
) -> T | None:
    """Call ``check`` until it returns something other than ``None``.

    Fixed delay between attempts. Without ``timeout`` the loop only ends
    on success or through ``cancel``.

    :param check:
        One attempt. Return ``None`` to try again.

    :param interval:
        Seconds between attempts.

    :param timeout:
        Give up and return ``None`` after this many seconds.

    :param cancel:
        Abort the loop with :py:class:`OperationCancelled`.

    :param description:
        What we are waiting for, for log messages.

    :return:
        The first non-``None`` value of ``check``, or ``None`` on timeout.
    """
    assert interval > 0, f"Poll interval must be positive, got {interval}"

    started = clock.time()
    attempt = 0

    while True:
        if cancel is not None:
            cancel.check(clock.time())

        attempt += 1
        result = check()
        elapsed = clock.time() - started
        if result is not None:
            logger.info("Got %s after %d attempts (%.1fs)", description, attempt, elapsed)
            return result

        if timeout is not None and elapsed >= timeout:
            logger.info("Gave up waiting for %s after %d attempts (%.1fs)", description, attempt, elapsed)
            return None

        log_level = logging.INFO if attempt == 1 else logging.DEBUG
        logger.log(log_level, "Waiting for %s, attempt=%d, elapsed=%.1fs", description, attempt, elapsed)

        delay = interval
        if timeout is not None:
            delay = min(interval, timeout - elapsed)
        clock.sleep(delay, cancel)
