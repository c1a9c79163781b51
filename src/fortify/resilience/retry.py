"""
Retry with configurable backoff.

A retry drives an operation up to ``max_attempts`` times. Errors are retried
unless ignored or rejected by the configured predicate and exception types;
results are retried while ``retry_on_result`` matches. Waits between attempts
come from an ``IntervalFunction``.
"""

from __future__ import annotations

import asyncio
import functools
import random
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from fortify.core.clock import SYSTEM_CLOCK, Clock
from fortify.core.config import ConfigMixin, coerce_enum, require
from fortify.core.events import EventPublisher, ResilienceEvent
from fortify.core.registry import Registry
from fortify.errors import MaxRetriesExceededError, OperationCancelledError, check_disjoint

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fortify.core.cancel import CancelToken

T = TypeVar("T")


class JitterStrategy(str, Enum):
    """Jitter applied on top of the computed interval."""

    NONE = "none"
    FULL = "full"
    EQUAL = "equal"


@dataclass(frozen=True)
class IntervalFunction:
    """Computes the wait before the next attempt.

    ``attempt`` is the number of attempts made so far (1 after the first
    failure). The base interval is ``initial_interval * multiplier **
    (attempt - 1)`` capped at ``max_interval``, then spread by
    ``randomization_factor`` and finally jittered.

    Example:
        >>> backoff = IntervalFunction.of_exponential_backoff(0.1, 2.0)
        >>> [backoff(n) for n in (1, 2, 3)]
        [0.1, 0.2, 0.4]
    """

    initial_interval: float = 0.5
    multiplier: float = 1.0
    max_interval: float | None = None
    randomization_factor: float = 0.0
    jitter: JitterStrategy = JitterStrategy.NONE

    def __post_init__(self) -> None:
        object.__setattr__(self, "jitter", coerce_enum(JitterStrategy, self.jitter, "jitter"))
        require(
            self.initial_interval >= 0,
            "initial_interval",
            self.initial_interval,
            "must not be negative",
        )
        require(self.multiplier >= 1.0, "multiplier", self.multiplier, "must be at least 1")
        require(
            self.max_interval is None or self.max_interval >= self.initial_interval,
            "max_interval",
            self.max_interval,
            "must not be smaller than initial_interval",
        )
        require(
            0 <= self.randomization_factor < 1,
            "randomization_factor",
            self.randomization_factor,
            "must be in [0, 1)",
        )

    @classmethod
    def of(cls, wait: float) -> IntervalFunction:
        """Constant interval."""
        return cls(initial_interval=wait)

    @classmethod
    def of_exponential_backoff(
        cls,
        initial_interval: float = 0.5,
        multiplier: float = 1.5,
        max_interval: float | None = None,
    ) -> IntervalFunction:
        return cls(
            initial_interval=initial_interval,
            multiplier=multiplier,
            max_interval=max_interval,
        )

    @classmethod
    def of_randomized(
        cls, wait: float = 0.5, randomization_factor: float = 0.5
    ) -> IntervalFunction:
        """Constant interval spread uniformly by ``randomization_factor``."""
        return cls(initial_interval=wait, randomization_factor=randomization_factor)

    @classmethod
    def of_exponential_random_backoff(
        cls,
        initial_interval: float = 0.5,
        multiplier: float = 1.5,
        randomization_factor: float = 0.5,
        max_interval: float | None = None,
    ) -> IntervalFunction:
        return cls(
            initial_interval=initial_interval,
            multiplier=multiplier,
            max_interval=max_interval,
            randomization_factor=randomization_factor,
        )

    def __call__(self, attempt: int) -> float:
        interval = self.initial_interval * (self.multiplier ** max(0, attempt - 1))
        if self.max_interval is not None:
            interval = min(interval, self.max_interval)

        if self.randomization_factor:
            delta = self.randomization_factor * interval
            interval = random.uniform(interval - delta, interval + delta)

        if self.jitter == JitterStrategy.FULL:
            # Full jitter: random between 0 and interval
            interval = random.uniform(0, interval)
        elif self.jitter == JitterStrategy.EQUAL:
            interval = interval / 2 + random.uniform(0, interval / 2)
        return interval


@dataclass(frozen=True)
class RetryConfig(ConfigMixin):
    """Configuration for retry.

    Attributes:
        max_attempts: Total attempts including the first call
        wait_duration: Constant wait used when no interval function is set
        interval_function: Wait computed from the attempt number
        retry_on_result: Predicate marking a returned value as retryable
        retry_on_exception: Predicate marking an error as retryable
        retry_exceptions: Exception types that are retried
        ignore_exceptions: Exception types rethrown without retrying
        fail_after_max_attempts: Raise MaxRetriesExceededError when attempts
            run out on a retryable result instead of returning it
    """

    env_prefix: ClassVar[str] = "FORTIFY_RETRY_"

    max_attempts: int = 3
    wait_duration: float = 0.5
    interval_function: IntervalFunction | None = None
    retry_on_result: Callable[[Any], bool] | None = None
    retry_on_exception: Callable[[BaseException], bool] | None = None
    retry_exceptions: tuple[type[BaseException], ...] = ()
    ignore_exceptions: tuple[type[BaseException], ...] = ()
    fail_after_max_attempts: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "retry_exceptions", tuple(self.retry_exceptions))
        object.__setattr__(self, "ignore_exceptions", tuple(self.ignore_exceptions))
        require(self.max_attempts >= 1, "max_attempts", self.max_attempts, "must be at least 1")
        require(
            self.wait_duration >= 0,
            "wait_duration",
            self.wait_duration,
            "must not be negative",
        )
        check_disjoint(
            self.retry_exceptions, self.ignore_exceptions, field="retry_exceptions"
        )

    def interval(self, attempt: int) -> float:
        """Seconds to wait after ``attempt`` failed attempts."""
        if self.interval_function is not None:
            return self.interval_function(attempt)
        return self.wait_duration

    def is_ignored(self, error: BaseException) -> bool:
        return bool(self.ignore_exceptions) and isinstance(error, self.ignore_exceptions)

    def should_retry_on_exception(self, error: BaseException) -> bool:
        """Check whether an error triggers another attempt."""
        if self.is_ignored(error):
            return False
        if not self.retry_exceptions and self.retry_on_exception is None:
            return True
        if self.retry_exceptions and isinstance(error, self.retry_exceptions):
            return True
        return bool(self.retry_on_exception and self.retry_on_exception(error))

    def should_retry_on_result(self, result: Any) -> bool:
        return bool(self.retry_on_result and self.retry_on_result(result))


class RetryEvent(ResilienceEvent):
    """Base class of retry events."""

    number_of_attempts: int = 0
    last_error: BaseException | None = None


class RetryOnRetryEvent(RetryEvent):
    event_type: str = "RETRY"
    wait_interval: float = 0.0
    last_result: Any = None


class RetryOnSuccessEvent(RetryEvent):
    event_type: str = "SUCCESS"


class RetryOnErrorEvent(RetryEvent):
    event_type: str = "ERROR"


class RetryOnIgnoredErrorEvent(RetryEvent):
    event_type: str = "IGNORED_ERROR"


class RetryEventPublisher(EventPublisher[RetryEvent]):
    """Named event channels of a retry."""

    def on_retry(self, handler: Any) -> RetryEventPublisher:
        self.subscribe(RetryOnRetryEvent, handler)
        return self

    def on_success(self, handler: Any) -> RetryEventPublisher:
        self.subscribe(RetryOnSuccessEvent, handler)
        return self

    def on_error(self, handler: Any) -> RetryEventPublisher:
        self.subscribe(RetryOnErrorEvent, handler)
        return self

    def on_ignored_error(self, handler: Any) -> RetryEventPublisher:
        self.subscribe(RetryOnIgnoredErrorEvent, handler)
        return self


@dataclass(frozen=True)
class RetryMetrics:
    """Call counters of a retry."""

    successful_calls_without_retry: int
    successful_calls_with_retry: int
    failed_calls_without_retry: int
    failed_calls_with_retry: int


class RetryContext:
    """State of one retried invocation.

    The context only decides; callers perform the waits it returns.

    Example:
        >>> context = retry.context()
        >>> while True:
        ...     try:
        ...         result = operation()
        ...     except Exception as e:
        ...         time.sleep(context.on_error(e))
        ...         continue
        ...     wait = context.on_result(result)
        ...     if wait is None:
        ...         context.on_success()
        ...         break
        ...     time.sleep(wait)
    """

    def __init__(self, retry: Retry) -> None:
        self._retry = retry
        self._config = retry.config
        self._attempts = 0
        self._last_error: BaseException | None = None

    @property
    def attempts(self) -> int:
        """Number of failed attempts so far."""
        return self._attempts

    def on_error(self, error: BaseException) -> float:
        """Record a failed attempt.

        Returns:
            Seconds to wait before the next attempt

        Raises:
            The error itself, when it is not retried or attempts are used up
        """
        if not self._config.should_retry_on_exception(error):
            self._retry._record_failure(retried=self._attempts > 0)
            self._retry._publish(
                RetryOnIgnoredErrorEvent(
                    name=self._retry.name,
                    number_of_attempts=self._attempts,
                    last_error=error,
                )
            )
            raise error

        self._attempts += 1
        self._last_error = error
        if self._attempts >= self._config.max_attempts:
            self._retry._record_failure(retried=self._attempts > 1)
            self._retry._publish(
                RetryOnErrorEvent(
                    name=self._retry.name,
                    number_of_attempts=self._attempts,
                    last_error=error,
                )
            )
            raise error

        wait = self._config.interval(self._attempts)
        self._retry._publish(
            RetryOnRetryEvent(
                name=self._retry.name,
                number_of_attempts=self._attempts,
                last_error=error,
                wait_interval=wait,
            )
        )
        return wait

    def on_result(self, result: Any) -> float | None:
        """Check a returned value.

        Returns:
            None to accept the result, or seconds to wait before retrying

        Raises:
            MaxRetriesExceededError: If attempts run out on a retryable
                result and ``fail_after_max_attempts`` is set
        """
        if not self._config.should_retry_on_result(result):
            return None

        self._attempts += 1
        if self._attempts >= self._config.max_attempts:
            if self._config.fail_after_max_attempts:
                error = MaxRetriesExceededError(self._retry.name, self._attempts, result)
                self._retry._record_failure(retried=self._attempts > 1)
                self._retry._publish(
                    RetryOnErrorEvent(
                        name=self._retry.name,
                        number_of_attempts=self._attempts,
                        last_error=error,
                    )
                )
                raise error
            return None

        wait = self._config.interval(self._attempts)
        self._retry._publish(
            RetryOnRetryEvent(
                name=self._retry.name,
                number_of_attempts=self._attempts,
                wait_interval=wait,
                last_result=result,
            )
        )
        return wait

    def on_success(self) -> None:
        """Record that the invocation finished with an accepted result."""
        if self._attempts == 0:
            self._retry._record_success(retried=False)
        elif self._attempts < self._config.max_attempts:
            self._retry._record_success(retried=True)
            self._retry._publish(
                RetryOnSuccessEvent(
                    name=self._retry.name,
                    number_of_attempts=self._attempts,
                    last_error=self._last_error,
                )
            )
        else:
            # attempts ran out on a retryable result that is returned as-is
            self._retry._record_failure(retried=self._attempts > 1)
            self._retry._publish(
                RetryOnErrorEvent(
                    name=self._retry.name,
                    number_of_attempts=self._attempts,
                    last_error=self._last_error,
                )
            )


class Retry:
    """Re-invokes an operation on retryable errors and results.

    Example:
        >>> retry = Retry("backend", RetryConfig(
        ...     max_attempts=4,
        ...     interval_function=IntervalFunction.of_exponential_backoff(0.1, 2.0),
        ...     retry_exceptions=(ConnectionError,),
        ... ))
        >>> result = retry.execute(call_backend)
    """

    def __init__(
        self,
        name: str,
        config: RetryConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize retry.

        Args:
            name: Retry name, carried by events and errors
            config: Retry configuration
            clock: Time source used for waits between attempts
        """
        self._name = name
        self._config = config or RetryConfig()
        self._clock = clock or SYSTEM_CLOCK
        self._event_publisher = RetryEventPublisher()
        self._lock = threading.Lock()
        self._succeeded_without_retry = 0
        self._succeeded_with_retry = 0
        self._failed_without_retry = 0
        self._failed_with_retry = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def event_publisher(self) -> RetryEventPublisher:
        return self._event_publisher

    def context(self) -> RetryContext:
        """Start a new invocation."""
        return RetryContext(self)

    def _publish(self, event: RetryEvent) -> None:
        self._event_publisher.publish(event)

    def _record_success(self, retried: bool) -> None:
        with self._lock:
            if retried:
                self._succeeded_with_retry += 1
            else:
                self._succeeded_without_retry += 1

    def _record_failure(self, retried: bool) -> None:
        with self._lock:
            if retried:
                self._failed_with_retry += 1
            else:
                self._failed_without_retry += 1

    def metrics(self) -> RetryMetrics:
        """Get retry call counters."""
        with self._lock:
            return RetryMetrics(
                successful_calls_without_retry=self._succeeded_without_retry,
                successful_calls_with_retry=self._succeeded_with_retry,
                failed_calls_without_retry=self._failed_without_retry,
                failed_calls_with_retry=self._failed_with_retry,
            )

    def _sleep(self, seconds: float, cancel_token: CancelToken | None) -> None:
        if seconds <= 0:
            return
        if cancel_token is None:
            self._clock.sleep(seconds)
        elif cancel_token.wait(seconds):
            raise OperationCancelledError(cancel_token.reason)

    def execute_supplier(
        self,
        operation: Callable[[], T],
        cancel_token: CancelToken | None = None,
    ) -> T:
        """Run a zero-argument operation with retries.

        Args:
            operation: Callable to invoke
            cancel_token: Aborts the wait between attempts

        Returns:
            The first accepted result

        Raises:
            The last error when it is not retried or attempts run out
            MaxRetriesExceededError: See ``RetryConfig.fail_after_max_attempts``
            OperationCancelledError: If a wait was cancelled
        """
        context = self.context()
        while True:
            try:
                result = operation()
            except Exception as e:
                self._sleep(context.on_error(e), cancel_token)
                continue

            wait = context.on_result(result)
            if wait is None:
                context.on_success()
                return result
            self._sleep(wait, cancel_token)

    def execute(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute an operation with retries."""
        return self.execute_supplier(functools.partial(operation, *args, **kwargs))

    def decorate(self, operation: Callable[..., T]) -> Callable[..., T]:
        """Wrap ``operation`` so every call is retried."""

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
        """Execute an async operation with retries; waits use ``asyncio.sleep``."""
        context = self.context()
        while True:
            try:
                result = await operation(*args, **kwargs)
            except Exception as e:
                wait = context.on_error(e)
            else:
                accepted = context.on_result(result)
                if accepted is None:
                    context.on_success()
                    return result
                wait = accepted
            if wait > 0:
                await asyncio.sleep(wait)

    def __repr__(self) -> str:
        return f"Retry(name={self._name!r}, max_attempts={self._config.max_attempts})"


class RetryRegistry(Registry[Retry, RetryConfig]):
    """Registry of named retries."""

    config_class = RetryConfig
    kind = "Retry"

    def __init__(
        self,
        default_config: RetryConfig | None = None,
        configurations: dict[str, RetryConfig] | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(default_config, configurations)
        self._clock = clock

    def _create_entry(self, name: str, config: RetryConfig) -> Retry:
        return Retry(name, config, clock=self._clock)

    def retry(self, name: str, config: RetryConfig | str | None = None) -> Retry:
        """Get or create the retry ``name``."""
        return self.get(name, config)
