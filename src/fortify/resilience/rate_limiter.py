"""
Rate limiter with fixed refresh cycles.

Time since creation is divided into cycles of ``limit_refresh_period``. At
the start of every cycle the available permissions are topped up to
``limit_for_period``. A caller that finds too few permissions reserves
them from a future cycle when the wait fits in its timeout, and then sleeps
until that cycle starts. Permissions may go negative while such
reservations are outstanding.
"""

from __future__ import annotations

import asyncio
import functools
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from fortify.core.clock import SYSTEM_CLOCK, Clock
from fortify.core.config import ConfigMixin, require
from fortify.core.events import EventPublisher, ResilienceEvent
from fortify.core.registry import Registry
from fortify.errors import OperationCancelledError, RequestNotPermittedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fortify.core.cancel import CancelToken

T = TypeVar("T")

_NANOS_PER_SECOND = 1_000_000_000


def _to_nanos(seconds: float) -> int:
    return int(round(seconds * _NANOS_PER_SECOND))


@dataclass(frozen=True)
class RateLimiterConfig(ConfigMixin):
    """Configuration for rate limiter.

    Attributes:
        limit_for_period: Permissions available in each refresh cycle
        limit_refresh_period: Cycle length in seconds
        timeout_duration: Default seconds a caller may wait for a permission
    """

    env_prefix: ClassVar[str] = "FORTIFY_RATELIMITER_"

    limit_for_period: int = 50
    limit_refresh_period: float = 1.0
    timeout_duration: float = 5.0

    def __post_init__(self) -> None:
        require(
            self.limit_for_period >= 1,
            "limit_for_period",
            self.limit_for_period,
            "must be at least 1",
        )
        require(
            _to_nanos(self.limit_refresh_period) >= 1,
            "limit_refresh_period",
            self.limit_refresh_period,
            "must be at least one nanosecond",
        )
        require(
            self.timeout_duration >= 0,
            "timeout_duration",
            self.timeout_duration,
            "must not be negative",
        )

    @classmethod
    def per_second(cls, limit: int, timeout_duration: float = 5.0) -> RateLimiterConfig:
        """Create config admitting ``limit`` calls per second."""
        return cls(limit_for_period=limit, limit_refresh_period=1.0, timeout_duration=timeout_duration)

    @classmethod
    def per_minute(cls, limit: int, timeout_duration: float = 5.0) -> RateLimiterConfig:
        """Create config admitting ``limit`` calls per minute."""
        return cls(limit_for_period=limit, limit_refresh_period=60.0, timeout_duration=timeout_duration)


class RateLimiterEvent(ResilienceEvent):
    """Base class of rate limiter events."""

    number_of_permits: int = 1


class RateLimiterOnSuccessEvent(RateLimiterEvent):
    event_type: str = "SUCCESSFUL_ACQUIRE"


class RateLimiterOnFailureEvent(RateLimiterEvent):
    event_type: str = "FAILED_ACQUIRE"


class RateLimiterOnDrainedEvent(RateLimiterEvent):
    event_type: str = "DRAINED"


class RateLimiterEventPublisher(EventPublisher[RateLimiterEvent]):
    """Named event channels of a rate limiter."""

    def on_success(self, handler: Any) -> RateLimiterEventPublisher:
        self.subscribe(RateLimiterOnSuccessEvent, handler)
        return self

    def on_failure(self, handler: Any) -> RateLimiterEventPublisher:
        self.subscribe(RateLimiterOnFailureEvent, handler)
        return self

    def on_drained(self, handler: Any) -> RateLimiterEventPublisher:
        self.subscribe(RateLimiterOnDrainedEvent, handler)
        return self


@dataclass(frozen=True)
class RateLimiterMetrics:
    """Point-in-time view of a rate limiter.

    ``available_permissions`` is negative while callers hold reservations
    on future cycles.
    """

    available_permissions: int
    number_of_waiting_threads: int
    nanos_to_wait: int


@dataclass(frozen=True)
class _State:
    active_cycle: int
    active_permissions: int
    nanos_to_wait: int


def _divide_ceil(dividend: int, divisor: int) -> int:
    return -(-dividend // divisor)


class RateLimiter:
    """Admits at most ``limit_for_period`` calls per refresh cycle.

    Example:
        >>> limiter = RateLimiter("api", RateLimiterConfig.per_second(10))
        >>> limiter.execute(call_api)

        >>> # Or reserve without blocking
        >>> wait = limiter.reserve_permission()
        >>> if wait >= 0:
        ...     time.sleep(wait)
    """

    def __init__(
        self,
        name: str,
        config: RateLimiterConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize rate limiter.

        Args:
            name: Rate limiter name, carried by events and errors
            config: Rate limiter configuration
            clock: Time source; cycles are aligned to its reading at creation
        """
        self._name = name
        self._config = config or RateLimiterConfig()
        self._clock = clock or SYSTEM_CLOCK
        self._event_publisher = RateLimiterEventPublisher()
        self._lock = threading.Lock()
        self._cycle_nanos = _to_nanos(self._config.limit_refresh_period)
        self._origin_nanos = self._clock.monotonic_ns()
        self._state = _State(0, self._config.limit_for_period, 0)
        self._waiting_threads = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    @property
    def event_publisher(self) -> RateLimiterEventPublisher:
        return self._event_publisher

    def _next_state(self, permits: int, timeout_nanos: int, state: _State) -> _State:
        limit = self._config.limit_for_period
        elapsed = self._clock.monotonic_ns() - self._origin_nanos
        current_cycle = elapsed // self._cycle_nanos

        next_cycle = state.active_cycle
        next_permissions = state.active_permissions
        if next_cycle != current_cycle:
            accumulated = (current_cycle - next_cycle) * limit
            next_cycle = current_cycle
            next_permissions = min(next_permissions + accumulated, limit)

        nanos_to_wait = self._nanos_to_wait(permits, next_permissions, elapsed, current_cycle)
        if nanos_to_wait <= timeout_nanos:
            next_permissions -= permits
        return _State(next_cycle, next_permissions, nanos_to_wait)

    def _nanos_to_wait(
        self, permits: int, available: int, elapsed: int, current_cycle: int
    ) -> int:
        if available >= permits:
            return 0
        limit = self._config.limit_for_period
        nanos_to_next_cycle = (current_cycle + 1) * self._cycle_nanos - elapsed
        permissions_at_next_cycle = available + limit
        full_cycles_to_wait = _divide_ceil(permits - permissions_at_next_cycle, limit)
        return full_cycles_to_wait * self._cycle_nanos + nanos_to_next_cycle

    def _reserve(self, permits: int, timeout: float) -> _State:
        if permits < 1:
            raise ValueError("permits must be at least 1")
        timeout_nanos = _to_nanos(timeout)
        with self._lock:
            self._state = self._next_state(permits, timeout_nanos, self._state)
            return self._state

    def acquire_permission(
        self,
        permits: int = 1,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> bool:
        """Acquire permissions, sleeping until a future cycle if needed.

        Args:
            permits: Number of permissions to take
            timeout: Maximum wait; defaults to ``timeout_duration``
            cancel_token: Aborts the sleep; the reservation is kept

        Returns:
            True if the permissions were granted

        Raises:
            OperationCancelledError: If the sleep was cancelled
        """
        if timeout is None:
            timeout = self._config.timeout_duration
        state = self._reserve(permits, timeout)

        if state.nanos_to_wait > _to_nanos(timeout):
            self._event_publisher.publish(
                RateLimiterOnFailureEvent(name=self._name, number_of_permits=permits)
            )
            return False

        if state.nanos_to_wait > 0:
            self._wait(state.nanos_to_wait / _NANOS_PER_SECOND, cancel_token)

        self._event_publisher.publish(
            RateLimiterOnSuccessEvent(name=self._name, number_of_permits=permits)
        )
        return True

    def _wait(self, seconds: float, cancel_token: CancelToken | None) -> None:
        with self._lock:
            self._waiting_threads += 1
        try:
            if cancel_token is None:
                self._clock.sleep(seconds)
            elif cancel_token.wait(seconds):
                raise OperationCancelledError(cancel_token.reason)
        finally:
            with self._lock:
                self._waiting_threads -= 1

    def reserve_permission(self, permits: int = 1, timeout: float | None = None) -> float:
        """Reserve permissions without sleeping.

        Returns:
            Seconds the caller must wait before proceeding (0 when the
            permissions are available now), or -1.0 when they cannot be
            reserved within the timeout
        """
        if timeout is None:
            timeout = self._config.timeout_duration
        state = self._reserve(permits, timeout)

        if state.nanos_to_wait > _to_nanos(timeout):
            self._event_publisher.publish(
                RateLimiterOnFailureEvent(name=self._name, number_of_permits=permits)
            )
            return -1.0

        self._event_publisher.publish(
            RateLimiterOnSuccessEvent(name=self._name, number_of_permits=permits)
        )
        return state.nanos_to_wait / _NANOS_PER_SECOND

    def drain_permissions(self) -> None:
        """Discard the permissions left in the current cycle."""
        with self._lock:
            state = self._next_state(0, 0, self._state)
            drained = max(0, state.active_permissions)
            self._state = _State(state.active_cycle, min(0, state.active_permissions), 0)
        self._event_publisher.publish(
            RateLimiterOnDrainedEvent(name=self._name, number_of_permits=drained)
        )

    def metrics(self) -> RateLimiterMetrics:
        """Get rate limiter metrics for the current cycle."""
        with self._lock:
            estimate = self._next_state(1, -1, self._state)
            return RateLimiterMetrics(
                available_permissions=estimate.active_permissions,
                number_of_waiting_threads=self._waiting_threads,
                nanos_to_wait=estimate.nanos_to_wait,
            )

    def execute(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute an operation after acquiring one permission.

        Raises:
            RequestNotPermittedError: If no permission is available in time
        """
        return self._execute(1, operation, args, kwargs)

    def _execute(
        self,
        permits: int,
        operation: Callable[..., T],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> T:
        if not self.acquire_permission(permits):
            raise RequestNotPermittedError(self._name)
        return operation(*args, **kwargs)

    def decorate(self, operation: Callable[..., T], permits: int = 1) -> Callable[..., T]:
        """Wrap ``operation`` so every call takes ``permits`` permissions."""

        @functools.wraps(operation)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return self._execute(permits, operation, args, kwargs)

        return wrapper

    async def execute_async(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        permits: int = 1,
        **kwargs: Any,
    ) -> T:
        """Execute an async operation after reserving permissions.

        The wait for a future cycle is an ``asyncio.sleep``.

        Raises:
            RequestNotPermittedError: If no permission is available in time
        """
        wait = self.reserve_permission(permits)
        if wait < 0:
            raise RequestNotPermittedError(self._name)
        if wait > 0:
            await asyncio.sleep(wait)
        return await operation(*args, **kwargs)

    def __repr__(self) -> str:
        return (
            f"RateLimiter(name={self._name!r}, "
            f"limit={self._config.limit_for_period}/{self._config.limit_refresh_period}s)"
        )


class RateLimiterRegistry(Registry[RateLimiter, RateLimiterConfig]):
    """Registry of named rate limiters."""

    config_class = RateLimiterConfig
    kind = "RateLimiter"

    def __init__(
        self,
        default_config: RateLimiterConfig | None = None,
        configurations: dict[str, RateLimiterConfig] | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(default_config, configurations)
        self._clock = clock

    def _create_entry(self, name: str, config: RateLimiterConfig) -> RateLimiter:
        return RateLimiter(name, config, clock=self._clock)

    def rate_limiter(
        self, name: str, config: RateLimiterConfig | str | None = None
    ) -> RateLimiter:
        """Get or create the rate limiter ``name``."""
        return self.get(name, config)
