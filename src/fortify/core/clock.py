"""
Injectable monotonic time sources.

Every time-dependent primitive reads time through a ``Clock`` so tests can
drive windows, open-state timers and rate-limiter cycles deterministically.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Monotonic time source."""

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def monotonic_ns(self) -> int:
        """Return monotonic time in nanoseconds."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block the calling thread for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by ``time.monotonic`` and ``time.sleep``."""

    def monotonic(self) -> float:
        return time.monotonic()

    def monotonic_ns(self) -> int:
        return time.monotonic_ns()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def __repr__(self) -> str:
        return "SystemClock()"


class ManualClock:
    """Clock that only moves when told to.

    ``sleep`` advances the clock instead of blocking, so code that waits on
    the clock completes instantly in tests.

    Example:
        >>> clock = ManualClock()
        >>> clock.advance(1.5)
        >>> clock.monotonic()
        1.5
    """

    def __init__(self, start: float = 0.0) -> None:
        self._lock = threading.Lock()
        self._now_ns = int(start * 1_000_000_000)

    def monotonic(self) -> float:
        with self._lock:
            return self._now_ns / 1_000_000_000

    def monotonic_ns(self) -> int:
        with self._lock:
            return self._now_ns

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.advance(seconds)

    def advance(self, seconds: float) -> None:
        """Move the clock forward.

        Args:
            seconds: Amount of time to add (must not be negative)
        """
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now_ns += int(round(seconds * 1_000_000_000))

    def set(self, seconds: float) -> None:
        """Set the clock to an absolute reading."""
        target = int(round(seconds * 1_000_000_000))
        with self._lock:
            if target < self._now_ns:
                raise ValueError("ManualClock cannot move backwards")
            self._now_ns = target

    def __repr__(self) -> str:
        return f"ManualClock(now={self.monotonic():.9f})"


SYSTEM_CLOCK: Clock = SystemClock()
