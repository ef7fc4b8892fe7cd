"""
🩺 Health Monitor
=================
Sliding-window degradation detector driving an adaptive backoff timer.

Degrade signals come from timeouts that are about to be retried and from
error messages that look like resource exhaustion on the target (connection
pool exhausted, transaction rollback, out of memory / sort memory). When
enough signals land inside the window, the whole run backs off: scenario
selection drops to light actions and think-time widens until the backoff
expires.
"""

import logging
import re
import time
from collections import deque
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)


EXHAUSTION_PATTERNS = re.compile(
    r"connection is not available"
    r"|pool (?:is )?exhausted"
    r"|hikaripool"
    r"|too many connections"
    r"|rollback"
    r"|rolled back"
    r"|out ?of ?memory"
    r"|outofmemoryerror"
    r"|out of sort memory"
    r"|sort memory",
    re.IGNORECASE,
)


def matches_exhaustion(message: Optional[str]) -> bool:
    """True if an error message looks like target-side resource exhaustion."""
    if not message:
        return False
    return EXHAUSTION_PATTERNS.search(message) is not None


class HealthMonitor:
    """
    Process-wide degradation signal counter.

    Args:
        window_seconds: Trailing window in which signals are counted.
        threshold: Signals within the window that trigger a backoff.
        backoff_seconds: How long a triggered backoff lasts.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        window_seconds: float = 30.0,
        threshold: int = 60,
        backoff_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.window_seconds = window_seconds
        self.threshold = threshold
        self.backoff_seconds = backoff_seconds
        self._clock = clock
        self._events: Deque[float] = deque()
        self.backoff_until = 0.0

        self.total_signals = 0
        self.backoff_trips = 0

    @property
    def window_size(self) -> int:
        return len(self._events)

    def signal(self, reason: str = "") -> bool:
        """
        Record one degrade signal.

        Returns True if this signal tripped a backoff.
        """
        now = self._clock()
        self.total_signals += 1
        self._events.append(now)

        cutoff = now - self.window_seconds
        while self._events and self._events[0] <= cutoff:
            self._events.popleft()

        if len(self._events) < self.threshold:
            return False

        self.backoff_until = max(self.backoff_until, now + self.backoff_seconds)
        self._events.clear()
        self.backoff_trips += 1
        logger.warning(
            "Target looks degraded (%d signals in %.0fs, last: %s); backing off for %.1fs",
            self.threshold, self.window_seconds, reason or "unspecified", self.backoff_seconds,
        )
        return True

    def signal_if_exhausted(self, message: Optional[str]) -> bool:
        """Signal only when the message matches an exhaustion pattern."""
        if matches_exhaustion(message):
            self.signal(f"exhaustion: {message[:80]}")
            return True
        return False

    def is_degraded(self) -> bool:
        return self._clock() < self.backoff_until

    @property
    def backoff_remaining(self) -> float:
        return max(0.0, self.backoff_until - self._clock())

    def to_dict(self) -> dict:
        return {
            "window_seconds": self.window_seconds,
            "threshold": self.threshold,
            "backoff_seconds": self.backoff_seconds,
            "total_signals": self.total_signals,
            "backoff_trips": self.backoff_trips,
        }
