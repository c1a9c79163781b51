"""
Time limiter bounding how long a caller waits for an asynchronous result.

Works on ``concurrent.futures.Future`` suppliers (blocking or non-blocking)
and on coroutines through ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from fortify.core.config import ConfigMixin, require
from fortify.core.events import EventPublisher, ResilienceEvent
from fortify.core.registry import Registry
from fortify.errors import TimeoutExceededError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from concurrent.futures import Future

T = TypeVar("T")


@dataclass(frozen=True)
class TimeLimiterConfig(ConfigMixin):
    """Configuration for time limiter.

    Attributes:
        timeout_duration: Seconds to wait for the result
        cancel_running_future: Cancel the underlying future on timeout
    """

    env_prefix: ClassVar[str] = "FORTIFY_TIMELIMITER_"

    timeout_duration: float = 1.0
    cancel_running_future: bool = True

    def __post_init__(self) -> None:
        require(
            self.timeout_duration > 0,
            "timeout_duration",
            self.timeout_duration,
            "must be positive",
        )


class TimeLimiterEvent(ResilienceEvent):
    """Base class of time limiter events."""


class TimeLimiterOnSuccessEvent(TimeLimiterEvent):
    event_type: str = "SUCCESS"


class TimeLimiterOnErrorEvent(TimeLimiterEvent):
    event_type: str = "ERROR"
    error: BaseException | None = None


class TimeLimiterOnTimeoutEvent(TimeLimiterEvent):
    event_type: str = "TIMEOUT"


class TimeLimiterEventPublisher(EventPublisher[TimeLimiterEvent]):
    """Named event channels of a time limiter."""

    def on_success(self, handler: Any) -> TimeLimiterEventPublisher:
        self.subscribe(TimeLimiterOnSuccessEvent, handler)
        return self

    def on_error(self, handler: Any) -> TimeLimiterEventPublisher:
        self.subscribe(TimeLimiterOnErrorEvent, handler)
        return self

    def on_timeout(self, handler: Any) -> TimeLimiterEventPublisher:
        self.subscribe(TimeLimiterOnTimeoutEvent, handler)
        return self


class TimeLimiter:
    """Fails a call with ``TimeoutExceededError`` when its result is late.

    Example:
        >>> limiter = TimeLimiter("slow-report", TimeLimiterConfig(timeout_duration=2.0))
        >>> report = limiter.execute_future_supplier(lambda: pool.submit(build_report))
    """

    def __init__(self, name: str, config: TimeLimiterConfig | None = None) -> None:
        self._name = name
        self._config = config or TimeLimiterConfig()
        self._event_publisher = TimeLimiterEventPublisher()

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> TimeLimiterConfig:
        return self._config

    @property
    def event_publisher(self) -> TimeLimiterEventPublisher:
        return self._event_publisher

    def _on_timeout(self) -> TimeoutExceededError:
        self._event_publisher.publish(TimeLimiterOnTimeoutEvent(name=self._name))
        return TimeoutExceededError(self._name, self._config.timeout_duration)

    def _on_outcome(self, error: BaseException | None) -> None:
        if error is None:
            self._event_publisher.publish(TimeLimiterOnSuccessEvent(name=self._name))
        else:
            self._event_publisher.publish(TimeLimiterOnErrorEvent(name=self._name, error=error))

    def execute_future_supplier(self, supplier: Callable[[], Future[T]]) -> T:
        """Block on the supplied future for at most ``timeout_duration``.

        Raises:
            TimeoutExceededError: If the future did not complete in time
        """
        future = supplier()
        try:
            result = future.result(timeout=self._config.timeout_duration)
        except Exception as e:
            # the future itself may have failed with a TimeoutError
            if isinstance(e, concurrent.futures.TimeoutError) and not future.done():
                if self._config.cancel_running_future:
                    future.cancel()
                raise self._on_timeout() from None
            self._on_outcome(e)
            raise
        self._on_outcome(None)
        return result

    def decorate_future_supplier(
        self, supplier: Callable[[], Future[T]]
    ) -> Callable[[], T]:
        """Wrap a future supplier into a blocking, time-limited callable."""

        @functools.wraps(supplier)
        def wrapper() -> T:
            return self.execute_future_supplier(supplier)

        return wrapper

    def decorate_future(
        self, supplier: Callable[..., Future[T]]
    ) -> Callable[..., Future[T]]:
        """Wrap a future supplier without blocking.

        The returned future fails with ``TimeoutExceededError`` when the
        supplied future does not complete within ``timeout_duration``.
        """

        @functools.wraps(supplier)
        def wrapper(*args: Any, **kwargs: Any) -> Future[T]:
            source = supplier(*args, **kwargs)
            limited: Future[T] = concurrent.futures.Future()

            def on_timeout() -> None:
                if limited.done():
                    return
                try:
                    limited.set_exception(
                        TimeoutExceededError(self._name, self._config.timeout_duration)
                    )
                except concurrent.futures.InvalidStateError:
                    return
                if self._config.cancel_running_future:
                    source.cancel()
                self._event_publisher.publish(TimeLimiterOnTimeoutEvent(name=self._name))

            timer = threading.Timer(self._config.timeout_duration, on_timeout)
            timer.daemon = True

            def on_source_done(done: Future[T]) -> None:
                timer.cancel()
                if limited.done():
                    return
                try:
                    if done.cancelled():
                        limited.cancel()
                        return
                    error = done.exception()
                    if error is None:
                        limited.set_result(done.result())
                    else:
                        limited.set_exception(error)
                except concurrent.futures.InvalidStateError:
                    return
                self._on_outcome(error)

            def on_limited_done(done: Future[T]) -> None:
                if done.cancelled():
                    source.cancel()

            limited.add_done_callback(on_limited_done)
            timer.start()
            source.add_done_callback(on_source_done)
            return limited

        return wrapper

    async def execute_async(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await an async operation for at most ``timeout_duration``.

        Without ``cancel_running_future`` the operation keeps running in
        the background after the timeout.

        Raises:
            TimeoutExceededError: If the operation did not complete in time
        """
        task: asyncio.Future[T] = asyncio.ensure_future(operation(*args, **kwargs))
        awaitable: Awaitable[T] = (
            task if self._config.cancel_running_future else asyncio.shield(task)
        )
        try:
            result = await asyncio.wait_for(awaitable, timeout=self._config.timeout_duration)
        except asyncio.TimeoutError as e:
            # the operation itself may have failed with a TimeoutError
            if task.done() and not task.cancelled():
                self._on_outcome(e)
                raise
            raise self._on_timeout() from None
        except Exception as e:
            self._on_outcome(e)
            raise
        self._on_outcome(None)
        return result

    def __repr__(self) -> str:
        return f"TimeLimiter(name={self._name!r}, timeout={self._config.timeout_duration}s)"


class TimeLimiterRegistry(Registry[TimeLimiter, TimeLimiterConfig]):
    """Registry of named time limiters."""

    config_class = TimeLimiterConfig
    kind = "TimeLimiter"

    def _create_entry(self, name: str, config: TimeLimiterConfig) -> TimeLimiter:
        return TimeLimiter(name, config)

    def time_limiter(
        self, name: str, config: TimeLimiterConfig | str | None = None
    ) -> TimeLimiter:
        """Get or create the time limiter ``name``."""
        return self.get(name, config)
