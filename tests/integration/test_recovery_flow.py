"""
Integration tests for end-to-end resilience flows.

Composes registries, decorators, telemetry and the manual clock the way an
application would.
"""

import logging

import pytest

from fortify.core import EventBuffer, ManualClock
from fortify.errors import CallNotPermittedError
from fortify.resilience import (
    CircuitBreakerRegistry,
    CircuitState,
    RateLimiter,
    RateLimiterConfig,
    RetryConfig,
    RetryRegistry,
    decorate,
)
from fortify.telemetry import EventLogger, FortifyLogger, MetricLabels, MetricsCollector


class TestCircuitLifecycle:
    """Tests for a breaker opening and recovering behind a fallback."""

    def test_open_then_recover(
        self, backend, breakers: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        """Test the full CLOSED -> OPEN -> HALF_OPEN -> CLOSED cycle."""
        collector = MetricsCollector()
        breaker = breakers.circuit_breaker("inventory")
        collector.bind_circuit_breaker(breaker)

        fetch = (
            decorate(backend.fetch)
            .with_circuit_breaker(breaker)
            .with_fallback((CallNotPermittedError, ConnectionError), lambda e: "cached rows")
            .decorate()
        )

        backend.down = True
        assert [fetch() for _ in range(4)] == ["cached rows"] * 4
        assert breaker.state == CircuitState.OPEN

        assert fetch() == "cached rows"
        assert backend.calls == 4

        backend.down = False
        clock.advance(30.0)
        assert fetch() == "rows from users"
        assert breaker.state == CircuitState.HALF_OPEN
        assert fetch() == "rows from users"
        assert breaker.state == CircuitState.CLOSED

        snapshot = collector.get_snapshot(MetricLabels("circuit_breaker", "inventory"))
        assert snapshot.state_transitions == {
            "CLOSED->OPEN": 1,
            "OPEN->HALF_OPEN": 1,
            "HALF_OPEN->CLOSED": 1,
        }
        assert snapshot.count("error") == 4
        assert snapshot.count("not_permitted") == 1
        assert snapshot.count("success") == 2
        assert snapshot.state == "CLOSED"

    def test_failed_trial_reopens(
        self, backend, breakers: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        """Test failing trial calls send the breaker back to OPEN."""
        breaker = breakers.circuit_breaker("inventory")
        events = EventBuffer()
        breaker.event_publisher.on_state_transition(events)
        breaker.transition_to_open()

        clock.advance(30.0)
        backend.down = True
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.execute(backend.fetch)

        assert breaker.state == CircuitState.OPEN
        assert [(e.from_state, e.to_state) for e in events.events] == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.OPEN),
        ]
        assert breaker.time_until_half_open() == pytest.approx(30.0)


class TestRetryAndRateLimit:
    """Tests for retries sharing a rate limit."""

    def test_retries_wait_for_permits(self, clock: ManualClock) -> None:
        """Test retry attempts consume permits and wait for the next cycle."""
        outcomes = iter([ConnectionError("reset"), ConnectionError("reset"), "rows"])

        def fetch() -> str:
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        limiter = RateLimiter(
            "inventory",
            RateLimiterConfig(limit_for_period=2, limit_refresh_period=1.0, timeout_duration=5.0),
            clock,
        )
        retries = RetryRegistry(RetryConfig(max_attempts=4, wait_duration=0.1), clock=clock)
        retry = retries.retry("inventory")

        operation = decorate(fetch).with_rate_limiter(limiter).with_retry(retry).build()

        assert operation() == "rows"
        assert clock.monotonic() == pytest.approx(1.0)
        assert retry.metrics().successful_calls_with_retry == 1
        assert limiter.metrics().available_permissions == 1


class TestObservabilityWiring:
    """Tests for wiring telemetry through registry events."""

    def test_entries_are_observed_on_creation(self, breakers: CircuitBreakerRegistry) -> None:
        """Test binding every new registry entry to a collector and logger."""
        collector = MetricsCollector()
        records: list[logging.LogRecord] = []
        handler = logging.Handler()
        handler.emit = records.append
        py_logger = logging.getLogger("tests.fortify.integration")
        py_logger.handlers.clear()
        py_logger.addHandler(handler)
        py_logger.setLevel(logging.INFO)
        py_logger.propagate = False
        event_logger = EventLogger(FortifyLogger(py_logger))

        def observe(event) -> None:
            collector.bind_circuit_breaker(event.entry)
            event_logger.attach(event.entry.event_publisher)

        breakers.event_publisher.on_entry_added(observe)

        breakers.circuit_breaker("inventory").execute(lambda: "ok")
        breakers.circuit_breaker("billing").transition_to_forced_open()
        with pytest.raises(CallNotPermittedError):
            breakers.circuit_breaker("billing").execute(lambda: "ok")

        assert collector.get_all_labels() == [
            MetricLabels("circuit_breaker", "billing"),
            MetricLabels("circuit_breaker", "inventory"),
        ]
        assert [r.getMessage() for r in records] == [
            "SUCCESS on 'inventory'",
            "STATE_TRANSITION on 'billing'",
            "NOT_PERMITTED on 'billing'",
        ]
        assert records[-1].levelno == logging.WARNING
        assert 'fortify_circuit_breaker_state{name="billing",state="FORCED_OPEN"} 1' in (
            collector.to_prometheus()
        )
