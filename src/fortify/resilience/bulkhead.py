"""
Semaphore bulkhead limiting concurrent calls.

Callers beyond the limit wait up to ``max_wait_duration`` for a permit.
Released permits are handed to waiters in arrival order.
"""

from __future__ import annotations

import asyncio
import functools
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from fortify.core.cancel import CancelToken
from fortify.core.config import ConfigMixin, require
from fortify.core.events import EventPublisher, ResilienceEvent
from fortify.core.registry import Registry
from fortify.errors import BulkheadFullError, OperationCancelledError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator
    from concurrent.futures import Future

T = TypeVar("T")


@dataclass(frozen=True)
class BulkheadConfig(ConfigMixin):
    """Configuration for a semaphore bulkhead.

    Attributes:
        max_concurrent_calls: Maximum number of calls in flight
        max_wait_duration: Seconds a caller may wait for a permit (0 = fail fast)
    """

    env_prefix: ClassVar[str] = "FORTIFY_BULKHEAD_"

    max_concurrent_calls: int = 25
    max_wait_duration: float = 0.0

    def __post_init__(self) -> None:
        require(
            self.max_concurrent_calls >= 1,
            "max_concurrent_calls",
            self.max_concurrent_calls,
            "must be at least 1",
        )
        require(
            self.max_wait_duration >= 0,
            "max_wait_duration",
            self.max_wait_duration,
            "must not be negative",
        )


class BulkheadEvent(ResilienceEvent):
    """Base class of bulkhead events."""


class BulkheadOnCallPermittedEvent(BulkheadEvent):
    event_type: str = "CALL_PERMITTED"


class BulkheadOnCallRejectedEvent(BulkheadEvent):
    event_type: str = "CALL_REJECTED"


class BulkheadOnCallFinishedEvent(BulkheadEvent):
    event_type: str = "CALL_FINISHED"


class BulkheadEventPublisher(EventPublisher[BulkheadEvent]):
    """Named event channels of a bulkhead."""

    def on_call_permitted(self, handler: Any) -> BulkheadEventPublisher:
        self.subscribe(BulkheadOnCallPermittedEvent, handler)
        return self

    def on_call_rejected(self, handler: Any) -> BulkheadEventPublisher:
        self.subscribe(BulkheadOnCallRejectedEvent, handler)
        return self

    def on_call_finished(self, handler: Any) -> BulkheadEventPublisher:
        self.subscribe(BulkheadOnCallFinishedEvent, handler)
        return self


@dataclass(frozen=True)
class BulkheadMetrics:
    """Point-in-time view of a bulkhead."""

    available_concurrent_calls: int
    max_allowed_concurrent_calls: int
    waiting_calls: int


class _Waiter:
    __slots__ = ("event", "granted")

    def __init__(self) -> None:
        self.event = threading.Event()
        self.granted = False


class Bulkhead:
    """Limits the number of concurrent calls to an operation.

    Example:
        >>> bulkhead = Bulkhead("db", BulkheadConfig(max_concurrent_calls=5))
        >>> result = bulkhead.execute(query)

        >>> # Or hold a permit explicitly
        >>> with bulkhead.permit():
        ...     query()
    """

    def __init__(self, name: str, config: BulkheadConfig | None = None) -> None:
        """Initialize bulkhead.

        Args:
            name: Bulkhead name, carried by events and errors
            config: Bulkhead configuration
        """
        self._name = name
        self._config = config or BulkheadConfig()
        self._event_publisher = BulkheadEventPublisher()
        self._lock = threading.Lock()
        self._available = self._config.max_concurrent_calls
        self._waiters: deque[_Waiter] = deque()

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> BulkheadConfig:
        return self._config

    @property
    def event_publisher(self) -> BulkheadEventPublisher:
        return self._event_publisher

    def try_acquire_permission(
        self,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> bool:
        """Acquire a permit, waiting up to ``timeout`` seconds.

        Args:
            timeout: Maximum wait; defaults to ``max_wait_duration``
            cancel_token: Aborts the wait when cancelled

        Returns:
            True if a permit was acquired

        Raises:
            OperationCancelledError: If the wait was cancelled
        """
        if timeout is None:
            timeout = self._config.max_wait_duration
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        waiter: _Waiter | None = None
        with self._lock:
            if self._available > 0 and not self._waiters:
                self._available -= 1
                acquired = True
            elif timeout <= 0:
                acquired = False
            else:
                waiter = _Waiter()
                self._waiters.append(waiter)

        if waiter is not None:
            acquired = self._await_handoff(waiter, timeout, cancel_token)

        if acquired:
            self._event_publisher.publish(BulkheadOnCallPermittedEvent(name=self._name))
        else:
            self._event_publisher.publish(BulkheadOnCallRejectedEvent(name=self._name))
        return acquired

    def _await_handoff(
        self,
        waiter: _Waiter,
        timeout: float,
        cancel_token: CancelToken | None,
    ) -> bool:
        remove_callback = (
            cancel_token.on_cancel(lambda _reason: waiter.event.set())
            if cancel_token is not None
            else None
        )
        try:
            waiter.event.wait(timeout)
        finally:
            if remove_callback is not None:
                remove_callback()

        with self._lock:
            if waiter.granted:
                return True
            self._waiters.remove(waiter)

        if cancel_token is not None and cancel_token.is_cancelled:
            raise OperationCancelledError(cancel_token.reason)
        return False

    def acquire_permission(
        self,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        """Acquire a permit or raise.

        Raises:
            BulkheadFullError: If no permit became available in time
            OperationCancelledError: If the wait was cancelled
        """
        if not self.try_acquire_permission(timeout, cancel_token):
            raise BulkheadFullError(self._name)

    def release_permission(self) -> None:
        """Return a permit without publishing a finished event.

        Used when a permit was acquired but the call never ran.
        """
        with self._lock:
            if self._waiters:
                waiter = self._waiters.popleft()
                waiter.granted = True
                waiter.event.set()
            elif self._available < self._config.max_concurrent_calls:
                self._available += 1

    def on_complete(self) -> None:
        """Return the permit of a finished call."""
        self.release_permission()
        self._event_publisher.publish(BulkheadOnCallFinishedEvent(name=self._name))

    def metrics(self) -> BulkheadMetrics:
        """Get bulkhead metrics."""
        with self._lock:
            return BulkheadMetrics(
                available_concurrent_calls=self._available,
                max_allowed_concurrent_calls=self._config.max_concurrent_calls,
                waiting_calls=len(self._waiters),
            )

    @contextmanager
    def permit(
        self,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> Iterator[None]:
        """Hold a permit for the duration of the ``with`` block.

        Raises:
            BulkheadFullError: If no permit became available in time
        """
        self.acquire_permission(timeout, cancel_token)
        try:
            yield
        finally:
            self.on_complete()

    def execute(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute an operation while holding a permit.

        Raises:
            BulkheadFullError: If no permit became available in time
        """
        self.acquire_permission()
        try:
            return operation(*args, **kwargs)
        finally:
            self.on_complete()

    def decorate(self, operation: Callable[..., T]) -> Callable[..., T]:
        """Wrap ``operation`` so every call holds a permit."""

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
        """Execute an async operation while holding a permit.

        A non-zero wait is spent in a worker thread so the event loop keeps
        running. Cancelling the caller cancels the wait; a permit handed to
        the abandoned waiter is released again.
        """
        if self._config.max_wait_duration > 0:
            token = CancelToken()
            acquiring = asyncio.ensure_future(
                asyncio.to_thread(self.acquire_permission, None, token)
            )
            try:
                await asyncio.shield(acquiring)
            except asyncio.CancelledError:
                token.cancel()
                acquiring.add_done_callback(self._release_abandoned)
                raise
        else:
            self.acquire_permission()
        try:
            return await operation(*args, **kwargs)
        finally:
            self.on_complete()

    def _release_abandoned(self, acquiring: asyncio.Future[None]) -> None:
        if acquiring.cancelled() or acquiring.exception() is not None:
            return
        self.release_permission()

    def decorate_future(
        self, supplier: Callable[..., Future[T]]
    ) -> Callable[..., Future[T]]:
        """Wrap a future supplier; the permit is held until the future completes.

        A rejected call yields a future failed with ``BulkheadFullError``.
        """
        from concurrent.futures import Future

        @functools.wraps(supplier)
        def wrapper(*args: Any, **kwargs: Any) -> Future[T]:
            failed: Future[T]
            try:
                self.acquire_permission()
            except BulkheadFullError as e:
                failed = Future()
                failed.set_exception(e)
                return failed

            try:
                future = supplier(*args, **kwargs)
            except Exception as e:
                self.on_complete()
                failed = Future()
                failed.set_exception(e)
                return failed

            future.add_done_callback(lambda _f: self.on_complete())
            return future

        return wrapper

    def __repr__(self) -> str:
        return (
            f"Bulkhead(name={self._name!r}, available={self._available}/"
            f"{self._config.max_concurrent_calls})"
        )


class BulkheadRegistry(Registry[Bulkhead, BulkheadConfig]):
    """Registry of named bulkheads."""

    config_class = BulkheadConfig
    kind = "Bulkhead"

    def _create_entry(self, name: str, config: BulkheadConfig) -> Bulkhead:
        return Bulkhead(name, config)

    def bulkhead(self, name: str, config: BulkheadConfig | str | None = None) -> Bulkhead:
        """Get or create the bulkhead ``name``."""
        return self.get(name, config)
