"""
Sliding windows aggregating call outcomes.

Two implementations share the same contract:
- FixedSizeSlidingWindow: the last N calls (COUNT_BASED)
- SlidingTimeWindow: calls of the last N seconds, bucketed (TIME_BASED)

Both keep running totals so a snapshot is O(1).
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fortify.core.clock import Clock


class Outcome(str, Enum):
    """Outcome class of a single recorded call."""

    SUCCESS = "success"
    ERROR = "error"
    SLOW_SUCCESS = "slow_success"
    SLOW_ERROR = "slow_error"

    @classmethod
    def of(cls, *, failed: bool, slow: bool) -> Outcome:
        if failed:
            return cls.SLOW_ERROR if slow else cls.ERROR
        return cls.SLOW_SUCCESS if slow else cls.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self in (Outcome.ERROR, Outcome.SLOW_ERROR)

    @property
    def is_slow(self) -> bool:
        return self in (Outcome.SLOW_SUCCESS, Outcome.SLOW_ERROR)


@dataclass(frozen=True)
class Snapshot:
    """Aggregated view of a window at one instant.

    Attributes:
        total_duration: Sum of call durations in seconds
        number_of_buffered_calls: Calls currently in the window
        number_of_failed_calls: Failed calls (slow or not)
        number_of_slow_calls: Slow calls (failed or not)
        number_of_slow_failed_calls: Calls that were both slow and failed
    """

    total_duration: float = 0.0
    number_of_buffered_calls: int = 0
    number_of_failed_calls: int = 0
    number_of_slow_calls: int = 0
    number_of_slow_failed_calls: int = 0

    @property
    def number_of_successful_calls(self) -> int:
        return self.number_of_buffered_calls - self.number_of_failed_calls

    @property
    def number_of_slow_successful_calls(self) -> int:
        return self.number_of_slow_calls - self.number_of_slow_failed_calls

    @property
    def average_duration(self) -> float:
        if self.number_of_buffered_calls == 0:
            return 0.0
        return self.total_duration / self.number_of_buffered_calls

    @property
    def failure_rate(self) -> float:
        """Failure rate in percent (0 when empty)."""
        if self.number_of_buffered_calls == 0:
            return 0.0
        return self.number_of_failed_calls * 100.0 / self.number_of_buffered_calls

    @property
    def slow_call_rate(self) -> float:
        """Slow call rate in percent (0 when empty)."""
        if self.number_of_buffered_calls == 0:
            return 0.0
        return self.number_of_slow_calls * 100.0 / self.number_of_buffered_calls


class _Aggregation:
    """Mutable running totals."""

    __slots__ = ("calls", "failed", "slow", "slow_failed", "total_duration")

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.total_duration = 0.0
        self.calls = 0
        self.failed = 0
        self.slow = 0
        self.slow_failed = 0

    def add(self, duration: float, outcome: Outcome) -> None:
        self.total_duration += duration
        self.calls += 1
        if outcome.is_failure:
            self.failed += 1
        if outcome.is_slow:
            self.slow += 1
            if outcome.is_failure:
                self.slow_failed += 1

    def remove(self, duration: float, outcome: Outcome) -> None:
        self.total_duration -= duration
        self.calls -= 1
        if outcome.is_failure:
            self.failed -= 1
        if outcome.is_slow:
            self.slow -= 1
            if outcome.is_failure:
                self.slow_failed -= 1

    def subtract(self, other: _Aggregation) -> None:
        self.total_duration -= other.total_duration
        self.calls -= other.calls
        self.failed -= other.failed
        self.slow -= other.slow
        self.slow_failed -= other.slow_failed

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            total_duration=max(self.total_duration, 0.0),
            number_of_buffered_calls=self.calls,
            number_of_failed_calls=self.failed,
            number_of_slow_calls=self.slow,
            number_of_slow_failed_calls=self.slow_failed,
        )


class SlidingWindow:
    """Common interface of the sliding windows."""

    def record(self, duration: float, outcome: Outcome) -> Snapshot:
        raise NotImplementedError

    def snapshot(self) -> Snapshot:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class FixedSizeSlidingWindow(SlidingWindow):
    """Ring buffer over the last ``size`` calls.

    Example:
        >>> window = FixedSizeSlidingWindow(10)
        >>> window.record(0.01, Outcome.ERROR).failure_rate
        100.0
    """

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("window size must be at least 1")
        self._size = size
        self._lock = threading.Lock()
        self._ring: list[tuple[float, Outcome] | None] = [None] * size
        self._head = 0
        self._total = _Aggregation()

    @property
    def size(self) -> int:
        return self._size

    def record(self, duration: float, outcome: Outcome) -> Snapshot:
        with self._lock:
            evicted = self._ring[self._head]
            if evicted is not None:
                self._total.remove(*evicted)
            self._ring[self._head] = (duration, outcome)
            self._total.add(duration, outcome)
            self._head = (self._head + 1) % self._size
            return self._total.to_snapshot()

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._total.to_snapshot()

    def reset(self) -> None:
        with self._lock:
            self._ring = [None] * self._size
            self._head = 0
            self._total.reset()


class SlidingTimeWindow(SlidingWindow):
    """Ring of per-bucket aggregates covering the last ``window_seconds``.

    Buckets are ``granularity`` seconds wide and keyed by their epoch
    (``int(now / granularity)``). Buckets that fall out of the window are
    zeroed lazily whenever the window is read or written.
    """

    def __init__(
        self,
        window_seconds: float,
        clock: Clock,
        granularity: float = 1.0,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window length must be positive")
        if granularity <= 0:
            raise ValueError("granularity must be positive")
        self._clock = clock
        self._granularity = granularity
        self._buckets_count = max(1, math.ceil(window_seconds / granularity))
        self._lock = threading.Lock()
        self._buckets = [_Aggregation() for _ in range(self._buckets_count)]
        self._total = _Aggregation()
        self._head_epoch = self._current_epoch()

    @property
    def size(self) -> int:
        """Number of buckets."""
        return self._buckets_count

    def _current_epoch(self) -> int:
        return int(self._clock.monotonic() // self._granularity)

    def _advance(self) -> _Aggregation:
        """Drop expired buckets and return the head bucket."""
        now_epoch = self._current_epoch()
        if now_epoch > self._head_epoch:
            steps = min(now_epoch - self._head_epoch, self._buckets_count)
            for offset in range(1, steps + 1):
                bucket = self._buckets[(self._head_epoch + offset) % self._buckets_count]
                self._total.subtract(bucket)
                bucket.reset()
            self._head_epoch = now_epoch
        return self._buckets[self._head_epoch % self._buckets_count]

    def record(self, duration: float, outcome: Outcome) -> Snapshot:
        with self._lock:
            head = self._advance()
            head.add(duration, outcome)
            self._total.add(duration, outcome)
            return self._total.to_snapshot()

    def snapshot(self) -> Snapshot:
        with self._lock:
            self._advance()
            return self._total.to_snapshot()

    def reset(self) -> None:
        with self._lock:
            for bucket in self._buckets:
                bucket.reset()
            self._total.reset()
            self._head_epoch = self._current_epoch()
