"""
Circuit breaker for fault isolation.

Implements a count- or time-windowed circuit breaker with five states:
- Closed: Normal operation, outcomes are recorded in the sliding window
- Open: Circuit tripped, calls fail fast until the wait duration elapses
- Half-Open: A bounded number of trial calls decide between closed and open
- Disabled: Always permits, records nothing
- Forced-Open: Always rejects until an explicit transition

Every state change increments a generation counter. Outcomes reported with
a stale generation are published as events but never reach the window.
"""

from __future__ import annotations

import functools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from fortify.core.clock import SYSTEM_CLOCK, Clock
from fortify.core.config import ConfigMixin, coerce_enum, require
from fortify.core.events import EventPublisher, ResilienceEvent
from fortify.core.registry import Registry
from fortify.errors import (
    CallNotPermittedError,
    ErrorClass,
    ExceptionClassifier,
    check_disjoint,
)
from fortify.resilience.sliding_window import (
    FixedSizeSlidingWindow,
    Outcome,
    SlidingTimeWindow,
    SlidingWindow,
    Snapshot,
)
from fortify.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from concurrent.futures import Future

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
    DISABLED = "disabled"
    FORCED_OPEN = "forced_open"


class SlidingWindowType(str, Enum):
    """How the closed-state window aggregates outcomes."""

    COUNT_BASED = "count_based"
    TIME_BASED = "time_based"


class RejectReason(str, Enum):
    """Why a call was not permitted."""

    OPEN = "open"
    FORCED_OPEN = "forced_open"
    HALF_OPEN_LIMIT_REACHED = "half_open_limit_reached"


@dataclass(frozen=True)
class Permission:
    """Result of a permission request.

    ``generation`` must be passed back with the outcome so that reports
    from a previous state are discarded.
    """

    permitted: bool
    generation: int
    reason: RejectReason | None = None

    def __bool__(self) -> bool:
        return self.permitted


_REJECTING_STATE = {
    RejectReason.OPEN: CircuitState.OPEN,
    RejectReason.FORCED_OPEN: CircuitState.FORCED_OPEN,
    RejectReason.HALF_OPEN_LIMIT_REACHED: CircuitState.HALF_OPEN,
}


@dataclass(frozen=True)
class CircuitBreakerConfig(ConfigMixin):
    """Configuration for circuit breaker.

    Attributes:
        failure_rate_threshold: Failure percentage (0, 100] that opens the circuit
        slow_call_rate_threshold: Slow-call percentage (0, 100] that opens the circuit
        slow_call_duration_threshold: Calls taking at least this long (seconds) are slow
        sliding_window_type: Count- or time-based closed-state window
        sliding_window_size: Calls (count-based) or seconds (time-based)
        minimum_number_of_calls: Calls required before rates are evaluated
        wait_duration_in_open_state: Seconds to stay open before trial calls
        permitted_number_of_calls_in_half_open_state: Trial calls in half-open
        automatic_transition_from_open_to_half_open_enabled: Move to half-open
            on a timer instead of on the next permission request
        record_exceptions: Exception types counted as failures (all, if empty
            and no ``record_exception`` predicate is set)
        ignore_exceptions: Exception types excluded from statistics
        record_exception: Predicate selecting recorded exceptions
        ignore_exception: Predicate selecting ignored exceptions
    """

    env_prefix: ClassVar[str] = "FORTIFY_CIRCUITBREAKER_"

    failure_rate_threshold: float = 50.0
    slow_call_rate_threshold: float = 100.0
    slow_call_duration_threshold: float = 60.0
    sliding_window_type: SlidingWindowType = SlidingWindowType.COUNT_BASED
    sliding_window_size: int = 100
    minimum_number_of_calls: int = 100
    wait_duration_in_open_state: float = 60.0
    permitted_number_of_calls_in_half_open_state: int = 10
    automatic_transition_from_open_to_half_open_enabled: bool = False
    record_exceptions: tuple[type[BaseException], ...] = ()
    ignore_exceptions: tuple[type[BaseException], ...] = ()
    record_exception: Callable[[BaseException], bool] | None = None
    ignore_exception: Callable[[BaseException], bool] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "record_exceptions", tuple(self.record_exceptions))
        object.__setattr__(self, "ignore_exceptions", tuple(self.ignore_exceptions))
        object.__setattr__(
            self,
            "sliding_window_type",
            coerce_enum(SlidingWindowType, self.sliding_window_type, "sliding_window_type"),
        )

        require(
            0 < self.failure_rate_threshold <= 100,
            "failure_rate_threshold",
            self.failure_rate_threshold,
            "must be in (0, 100]",
        )
        require(
            0 < self.slow_call_rate_threshold <= 100,
            "slow_call_rate_threshold",
            self.slow_call_rate_threshold,
            "must be in (0, 100]",
        )
        require(
            self.slow_call_duration_threshold > 0,
            "slow_call_duration_threshold",
            self.slow_call_duration_threshold,
            "must be positive",
        )
        require(
            self.sliding_window_size >= 1,
            "sliding_window_size",
            self.sliding_window_size,
            "must be at least 1",
        )
        require(
            self.minimum_number_of_calls >= 1,
            "minimum_number_of_calls",
            self.minimum_number_of_calls,
            "must be at least 1",
        )
        require(
            self.wait_duration_in_open_state > 0,
            "wait_duration_in_open_state",
            self.wait_duration_in_open_state,
            "must be positive",
        )
        require(
            self.permitted_number_of_calls_in_half_open_state >= 1,
            "permitted_number_of_calls_in_half_open_state",
            self.permitted_number_of_calls_in_half_open_state,
            "must be at least 1",
        )
        check_disjoint(
            self.record_exceptions, self.ignore_exceptions, field="record_exceptions"
        )

    @property
    def effective_minimum_number_of_calls(self) -> int:
        """Minimum number of calls, clamped to a count-based window size."""
        if self.sliding_window_type == SlidingWindowType.COUNT_BASED:
            return min(self.minimum_number_of_calls, self.sliding_window_size)
        return self.minimum_number_of_calls

    def exception_classifier(self) -> ExceptionClassifier:
        return ExceptionClassifier(
            record_exceptions=self.record_exceptions,
            ignore_exceptions=self.ignore_exceptions,
            record_exception=self.record_exception,
            ignore_exception=self.ignore_exception,
        )


# Events


class CircuitBreakerEvent(ResilienceEvent):
    """Base class of circuit breaker events."""


class CircuitBreakerOnSuccessEvent(CircuitBreakerEvent):
    event_type: str = "SUCCESS"
    elapsed_duration: float = 0.0


class CircuitBreakerOnErrorEvent(CircuitBreakerEvent):
    event_type: str = "ERROR"
    elapsed_duration: float = 0.0
    error: BaseException | None = None


class CircuitBreakerOnIgnoredErrorEvent(CircuitBreakerEvent):
    event_type: str = "IGNORED_ERROR"
    elapsed_duration: float = 0.0
    error: BaseException | None = None


class CircuitBreakerOnCallNotPermittedEvent(CircuitBreakerEvent):
    event_type: str = "NOT_PERMITTED"
    reason: RejectReason | None = None


class CircuitBreakerOnStateTransitionEvent(CircuitBreakerEvent):
    event_type: str = "STATE_TRANSITION"
    from_state: CircuitState
    to_state: CircuitState

    def __str__(self) -> str:
        return (
            f"{self.created_at.isoformat()}: CircuitBreaker '{self.name}' changed "
            f"state from {self.from_state.name} to {self.to_state.name}"
        )


class CircuitBreakerOnResetEvent(CircuitBreakerEvent):
    event_type: str = "RESET"


class CircuitBreakerOnFailureRateExceededEvent(CircuitBreakerEvent):
    event_type: str = "FAILURE_RATE_EXCEEDED"
    failure_rate: float = 0.0


class CircuitBreakerOnSlowCallRateExceededEvent(CircuitBreakerEvent):
    event_type: str = "SLOW_CALL_RATE_EXCEEDED"
    slow_call_rate: float = 0.0


class CircuitBreakerEventPublisher(EventPublisher[CircuitBreakerEvent]):
    """Named event channels of a circuit breaker."""

    def on_success(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnSuccessEvent, handler)
        return self

    def on_error(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnErrorEvent, handler)
        return self

    def on_ignored_error(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnIgnoredErrorEvent, handler)
        return self

    def on_call_not_permitted(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnCallNotPermittedEvent, handler)
        return self

    def on_state_transition(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnStateTransitionEvent, handler)
        return self

    def on_reset(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnResetEvent, handler)
        return self

    def on_failure_rate_exceeded(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnFailureRateExceededEvent, handler)
        return self

    def on_slow_call_rate_exceeded(self, handler: Any) -> CircuitBreakerEventPublisher:
        self.subscribe(CircuitBreakerOnSlowCallRateExceededEvent, handler)
        return self


@dataclass(frozen=True)
class CircuitBreakerMetrics:
    """Point-in-time view of a circuit breaker.

    Rates are percentages, or -1.0 while fewer than the minimum number of
    calls have been recorded.
    """

    state: CircuitState
    failure_rate: float
    slow_call_rate: float
    number_of_buffered_calls: int
    number_of_failed_calls: int
    number_of_successful_calls: int
    number_of_slow_calls: int
    number_of_slow_successful_calls: int
    number_of_slow_failed_calls: int
    number_of_not_permitted_calls: int


class CircuitBreaker:
    """Circuit breaker for fault isolation.

    Prevents cascading failures by failing fast when the failure or slow
    call rate of the protected operation crosses a threshold.

    Example:
        >>> breaker = CircuitBreaker("backend", CircuitBreakerConfig(
        ...     sliding_window_size=10, minimum_number_of_calls=5))
        >>> try:
        ...     result = breaker.execute(call_backend)
        ... except CallNotPermittedError:
        ...     print("Service unavailable")
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Circuit breaker name, carried by events and errors
            config: Circuit breaker configuration
            clock: Time source for durations and the open-state wait
        """
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or SYSTEM_CLOCK
        self._classifier = self._config.exception_classifier()
        self._event_publisher = CircuitBreakerEventPublisher()
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._generation = 0
        self._window: SlidingWindow = self._closed_window()
        self._opened_at: float | None = None
        self._half_open_admitted = 0
        self._not_permitted_calls = 0
        self._timer: threading.Timer | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self._state

    @property
    def generation(self) -> int:
        """Monotonic counter incremented on every state transition."""
        return self._generation

    @property
    def event_publisher(self) -> CircuitBreakerEventPublisher:
        return self._event_publisher

    def _closed_window(self) -> SlidingWindow:
        if self._config.sliding_window_type == SlidingWindowType.TIME_BASED:
            return SlidingTimeWindow(self._config.sliding_window_size, self._clock)
        return FixedSizeSlidingWindow(self._config.sliding_window_size)

    def _minimum_calls(self) -> int:
        if self._state == CircuitState.HALF_OPEN:
            return self._config.permitted_number_of_calls_in_half_open_state
        return self._config.effective_minimum_number_of_calls

    # Permission

    def try_acquire_permission(self) -> Permission:
        """Request permission to execute a call.

        Transitions OPEN to HALF_OPEN when the wait duration has elapsed.

        Returns:
            Permission carrying the generation the outcome must be reported with
        """
        events: list[CircuitBreakerEvent] = []
        with self._lock:
            if self._state == CircuitState.OPEN and self._open_wait_elapsed():
                self._transition_locked(CircuitState.HALF_OPEN, events)

            state = self._state
            if state in (CircuitState.CLOSED, CircuitState.DISABLED):
                permission = Permission(True, self._generation)
            elif state == CircuitState.HALF_OPEN:
                limit = self._config.permitted_number_of_calls_in_half_open_state
                if self._half_open_admitted < limit:
                    self._half_open_admitted += 1
                    permission = Permission(True, self._generation)
                else:
                    permission = Permission(
                        False, self._generation, RejectReason.HALF_OPEN_LIMIT_REACHED
                    )
            elif state == CircuitState.FORCED_OPEN:
                permission = Permission(False, self._generation, RejectReason.FORCED_OPEN)
            else:
                permission = Permission(False, self._generation, RejectReason.OPEN)

            if not permission.permitted:
                self._not_permitted_calls += 1
                events.append(
                    CircuitBreakerOnCallNotPermittedEvent(
                        name=self._name, reason=permission.reason
                    )
                )

        self._publish(events)
        return permission

    def acquire_permission(self) -> int:
        """Request permission, raising when the call is not permitted.

        Returns:
            Generation to report the outcome with

        Raises:
            CallNotPermittedError: If the circuit rejects the call
        """
        permission = self.try_acquire_permission()
        if not permission.permitted:
            raise CallNotPermittedError(
                self._name,
                _REJECTING_STATE[permission.reason].name,
                permission.reason.value,
            )
        return permission.generation

    def release_permission(self, generation: int | None = None) -> None:
        """Give back a permission without recording an outcome."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            if self._state == CircuitState.HALF_OPEN and self._half_open_admitted > 0:
                self._half_open_admitted -= 1

    def _open_wait_elapsed(self) -> bool:
        if self._opened_at is None:
            return False
        elapsed = self._clock.monotonic() - self._opened_at
        return elapsed >= self._config.wait_duration_in_open_state

    def time_until_half_open(self) -> float | None:
        """Seconds until an OPEN circuit permits trial calls, or None."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._opened_at is None:
                return None
            elapsed = self._clock.monotonic() - self._opened_at
            return max(0.0, self._config.wait_duration_in_open_state - elapsed)

    # Outcome reporting

    def on_success(self, duration: float, generation: int | None = None) -> None:
        """Record a successful call.

        Args:
            duration: Call duration in seconds
            generation: Generation returned with the permission
        """
        events: list[CircuitBreakerEvent] = [
            CircuitBreakerOnSuccessEvent(name=self._name, elapsed_duration=duration)
        ]
        slow = duration >= self._config.slow_call_duration_threshold
        with self._lock:
            if self._accepts_outcome_locked(generation):
                self._record_locked(duration, Outcome.of(failed=False, slow=slow), events)
        self._publish(events)

    def on_error(
        self,
        duration: float,
        error: BaseException,
        generation: int | None = None,
    ) -> None:
        """Record a failed call.

        Ignored errors and errors outside an explicit record set release the
        permission and are published as ignored errors.

        Args:
            duration: Call duration in seconds
            error: The error raised by the call
            generation: Generation returned with the permission
        """
        if self._classifier.classify(error) != ErrorClass.RECORDED:
            self._on_ignored(duration, error, generation)
            return

        events: list[CircuitBreakerEvent] = [
            CircuitBreakerOnErrorEvent(name=self._name, elapsed_duration=duration, error=error)
        ]
        slow = duration >= self._config.slow_call_duration_threshold
        with self._lock:
            if self._accepts_outcome_locked(generation):
                self._record_locked(duration, Outcome.of(failed=True, slow=slow), events)
        self._publish(events)

    def _on_ignored(
        self, duration: float, error: BaseException, generation: int | None
    ) -> None:
        self.release_permission(generation)
        self._publish(
            [
                CircuitBreakerOnIgnoredErrorEvent(
                    name=self._name, elapsed_duration=duration, error=error
                )
            ]
        )

    def _accepts_outcome_locked(self, generation: int | None) -> bool:
        if generation is not None and generation != self._generation:
            return False
        return self._state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def _record_locked(
        self,
        duration: float,
        outcome: Outcome,
        events: list[CircuitBreakerEvent],
    ) -> None:
        snapshot = self._window.record(duration, outcome)
        if snapshot.number_of_buffered_calls < self._minimum_calls():
            return

        exceeded = False
        if snapshot.failure_rate >= self._config.failure_rate_threshold:
            events.append(
                CircuitBreakerOnFailureRateExceededEvent(
                    name=self._name, failure_rate=snapshot.failure_rate
                )
            )
            exceeded = True
        if snapshot.slow_call_rate >= self._config.slow_call_rate_threshold:
            events.append(
                CircuitBreakerOnSlowCallRateExceededEvent(
                    name=self._name, slow_call_rate=snapshot.slow_call_rate
                )
            )
            exceeded = True

        if exceeded:
            self._transition_locked(CircuitState.OPEN, events)
        elif self._state == CircuitState.HALF_OPEN:
            self._transition_locked(CircuitState.CLOSED, events)

    # State transitions

    def _transition_locked(
        self, to_state: CircuitState, events: list[CircuitBreakerEvent]
    ) -> None:
        from_state = self._state
        self._cancel_timer_locked()

        self._generation += 1
        self._state = to_state
        self._half_open_admitted = 0
        self._opened_at = None

        if to_state == CircuitState.HALF_OPEN:
            self._window = FixedSizeSlidingWindow(
                self._config.permitted_number_of_calls_in_half_open_state
            )
        else:
            self._window = self._closed_window()

        if to_state == CircuitState.OPEN:
            self._opened_at = self._clock.monotonic()
            if self._config.automatic_transition_from_open_to_half_open_enabled:
                self._schedule_timer_locked()

        events.append(
            CircuitBreakerOnStateTransitionEvent(
                name=self._name, from_state=from_state, to_state=to_state
            )
        )

    def _schedule_timer_locked(self) -> None:
        timer = threading.Timer(
            self._config.wait_duration_in_open_state,
            self._on_open_wait_elapsed,
            args=(self._generation,),
        )
        timer.daemon = True
        timer.name = f"fortify-circuit-breaker-{self._name}"
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_open_wait_elapsed(self, generation: int) -> None:
        events: list[CircuitBreakerEvent] = []
        with self._lock:
            if self._state != CircuitState.OPEN or self._generation != generation:
                return
            self._timer = None
            self._transition_locked(CircuitState.HALF_OPEN, events)
        logger.debug("Circuit breaker half-open after wait", circuit_breaker=self._name)
        self._publish(events)

    def _transition(self, to_state: CircuitState) -> None:
        events: list[CircuitBreakerEvent] = []
        with self._lock:
            self._transition_locked(to_state, events)
        self._publish(events)

    def transition_to_closed(self) -> None:
        """Force the circuit closed with a fresh window."""
        self._transition(CircuitState.CLOSED)

    def transition_to_open(self) -> None:
        """Force the circuit open; the wait duration starts now."""
        self._transition(CircuitState.OPEN)

    def transition_to_half_open(self) -> None:
        """Force the circuit into the trial state."""
        self._transition(CircuitState.HALF_OPEN)

    def transition_to_disabled(self) -> None:
        """Permit every call and stop recording."""
        self._transition(CircuitState.DISABLED)

    def transition_to_forced_open(self) -> None:
        """Reject every call until another explicit transition."""
        self._transition(CircuitState.FORCED_OPEN)

    def reset(self) -> None:
        """Return to a freshly constructed CLOSED state.

        The generation keeps increasing so in-flight reports are discarded.
        """
        events: list[CircuitBreakerEvent] = []
        with self._lock:
            from_state = self._state
            self._transition_locked(CircuitState.CLOSED, [])
            self._not_permitted_calls = 0
            if from_state != CircuitState.CLOSED:
                events.append(
                    CircuitBreakerOnStateTransitionEvent(
                        name=self._name,
                        from_state=from_state,
                        to_state=CircuitState.CLOSED,
                    )
                )
            events.append(CircuitBreakerOnResetEvent(name=self._name))
        self._publish(events)

    def close(self) -> None:
        """Cancel the pending open-state timer, if any."""
        with self._lock:
            self._cancel_timer_locked()

    # Metrics

    def metrics(self) -> CircuitBreakerMetrics:
        """Get circuit breaker metrics."""
        with self._lock:
            snapshot: Snapshot = self._window.snapshot()
            evaluated = snapshot.number_of_buffered_calls >= self._minimum_calls()
            return CircuitBreakerMetrics(
                state=self._state,
                failure_rate=snapshot.failure_rate if evaluated else -1.0,
                slow_call_rate=snapshot.slow_call_rate if evaluated else -1.0,
                number_of_buffered_calls=snapshot.number_of_buffered_calls,
                number_of_failed_calls=snapshot.number_of_failed_calls,
                number_of_successful_calls=snapshot.number_of_successful_calls,
                number_of_slow_calls=snapshot.number_of_slow_calls,
                number_of_slow_successful_calls=snapshot.number_of_slow_successful_calls,
                number_of_slow_failed_calls=snapshot.number_of_slow_failed_calls,
                number_of_not_permitted_calls=self._not_permitted_calls,
            )

    def _publish(self, events: list[CircuitBreakerEvent]) -> None:
        for event in events:
            self._event_publisher.publish(event)

    # Execution

    def execute(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute an operation through the circuit breaker.

        Args:
            operation: Callable to execute
            *args: Positional arguments for the operation
            **kwargs: Keyword arguments for the operation

        Returns:
            Operation result

        Raises:
            CallNotPermittedError: If the circuit rejects the call
        """
        generation = self.acquire_permission()
        start = self._clock.monotonic()
        try:
            result = operation(*args, **kwargs)
        except Exception as e:
            self.on_error(self._clock.monotonic() - start, e, generation)
            raise
        except BaseException as e:
            self._on_ignored(self._clock.monotonic() - start, e, generation)
            raise
        self.on_success(self._clock.monotonic() - start, generation)
        return result

    def decorate(self, operation: Callable[..., T]) -> Callable[..., T]:
        """Wrap ``operation`` so every call goes through the breaker."""

        @functools.wraps(operation)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return self.execute(operation, *args, **kwargs)

        return wrapper

    async def execute_async(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Execute an async operation through the circuit breaker.

        Task cancellation releases the permission without recording.
        """
        generation = self.acquire_permission()
        start = self._clock.monotonic()
        try:
            result = await operation(*args, **kwargs)
        except Exception as e:
            self.on_error(self._clock.monotonic() - start, e, generation)
            raise
        except BaseException as e:
            self._on_ignored(self._clock.monotonic() - start, e, generation)
            raise
        self.on_success(self._clock.monotonic() - start, generation)
        return result

    def decorate_future(
        self, supplier: Callable[..., Future[T]]
    ) -> Callable[..., Future[T]]:
        """Wrap a future supplier; the outcome is recorded on completion.

        A rejected call or a supplier that raises yields a failed future.
        """
        from concurrent.futures import Future

        @functools.wraps(supplier)
        def wrapper(*args: Any, **kwargs: Any) -> Future[T]:
            try:
                generation = self.acquire_permission()
            except CallNotPermittedError as e:
                failed: Future[T] = Future()
                failed.set_exception(e)
                return failed

            start = self._clock.monotonic()
            try:
                future = supplier(*args, **kwargs)
            except Exception as e:
                self.on_error(self._clock.monotonic() - start, e, generation)
                failed = Future()
                failed.set_exception(e)
                return failed

            def on_done(done: Future[T]) -> None:
                duration = self._clock.monotonic() - start
                if done.cancelled():
                    self.release_permission(generation)
                    return
                error = done.exception()
                if error is None:
                    self.on_success(duration, generation)
                else:
                    self.on_error(duration, error, generation)

            future.add_done_callback(on_done)
            return future

        return wrapper

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self._name!r}, state={self._state.value}, "
            f"generation={self._generation})"
        )


class CircuitBreakerRegistry(Registry[CircuitBreaker, CircuitBreakerConfig]):
    """Registry of named circuit breakers.

    Example:
        >>> registry = CircuitBreakerRegistry.of_defaults()
        >>> breaker = registry.circuit_breaker("backend")
    """

    config_class = CircuitBreakerConfig
    kind = "CircuitBreaker"

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        configurations: dict[str, CircuitBreakerConfig] | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(default_config, configurations)
        self._clock = clock

    def _create_entry(self, name: str, config: CircuitBreakerConfig) -> CircuitBreaker:
        return CircuitBreaker(name, config, clock=self._clock)

    def circuit_breaker(
        self, name: str, config: CircuitBreakerConfig | str | None = None
    ) -> CircuitBreaker:
        """Get or create the circuit breaker ``name``."""
        return self.get(name, config)

    def close(self) -> None:
        """Cancel the timers of every registered circuit breaker."""
        for breaker in self.all_entries():
            breaker.close()
