"""
Integration test helper utilities.

Shared fixtures and a scripted backend for end-to-end scenarios.
"""

from __future__ import annotations

import threading

import pytest

from fortify.core import ManualClock
from fortify.resilience import CircuitBreakerConfig, CircuitBreakerRegistry


class ScriptedBackend:
    """Backend whose availability is switched by the test.

    Thread-safe; counts calls and tracks the peak number of concurrent calls.
    """

    def __init__(self, work: float = 0.0) -> None:
        self.down = False
        self.calls = 0
        self.peak_concurrency = 0
        self._work = work
        self._current = 0
        self._lock = threading.Lock()

    def fetch(self, key: str = "users") -> str:
        with self._lock:
            self.calls += 1
            self._current += 1
            self.peak_concurrency = max(self.peak_concurrency, self._current)
            down = self.down
        try:
            if self._work:
                threading.Event().wait(self._work)
            if down:
                raise ConnectionError("backend unavailable")
            return f"rows from {key}"
        finally:
            with self._lock:
                self._current -= 1


@pytest.fixture
def backend() -> ScriptedBackend:
    """A healthy scripted backend."""
    return ScriptedBackend()


@pytest.fixture
def make_backend() -> type[ScriptedBackend]:
    """Factory for scripted backends with a per-call work time."""
    return ScriptedBackend


@pytest.fixture
def breakers(clock: ManualClock) -> CircuitBreakerRegistry:
    """Circuit breaker registry on the manual clock."""
    config = CircuitBreakerConfig(
        sliding_window_size=4,
        minimum_number_of_calls=4,
        wait_duration_in_open_state=30.0,
        permitted_number_of_calls_in_half_open_state=2,
    )
    registry = CircuitBreakerRegistry(config, clock=clock)
    yield registry
    registry.close()
