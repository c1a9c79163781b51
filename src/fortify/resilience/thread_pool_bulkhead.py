"""
Thread-pool bulkhead: a bounded worker pool with a bounded queue.

Submissions never block. A task goes straight to an idle worker if there
is one, starts a new worker while the pool is below its core size, waits
in the queue while the queue has room, starts an extra worker while the
pool is below its maximum size, and is rejected otherwise.
"""

from __future__ import annotations

import functools
import os
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from fortify.core.config import ConfigMixin, require
from fortify.core.registry import Registry
from fortify.errors import BulkheadFullError
from fortify.resilience.bulkhead import (
    BulkheadEventPublisher,
    BulkheadOnCallFinishedEvent,
    BulkheadOnCallPermittedEvent,
    BulkheadOnCallRejectedEvent,
)
from fortify.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

T = TypeVar("T")


def _default_core_size() -> int:
    return max(1, (os.cpu_count() or 1) - 1)


def _default_max_size() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class ThreadPoolBulkheadConfig(ConfigMixin):
    """Configuration for a thread-pool bulkhead.

    Attributes:
        core_thread_pool_size: Workers kept alive while idle
        max_thread_pool_size: Upper bound on workers
        queue_capacity: Tasks that may wait for a worker
        keep_alive_duration: Seconds an extra worker stays idle before exiting
    """

    env_prefix: ClassVar[str] = "FORTIFY_THREADPOOLBULKHEAD_"

    core_thread_pool_size: int = field(default_factory=_default_core_size)
    max_thread_pool_size: int = field(default_factory=_default_max_size)
    queue_capacity: int = 100
    keep_alive_duration: float = 0.02

    def __post_init__(self) -> None:
        require(
            self.core_thread_pool_size >= 1,
            "core_thread_pool_size",
            self.core_thread_pool_size,
            "must be at least 1",
        )
        require(
            self.max_thread_pool_size >= self.core_thread_pool_size,
            "max_thread_pool_size",
            self.max_thread_pool_size,
            "must not be smaller than core_thread_pool_size",
        )
        require(
            self.queue_capacity >= 0,
            "queue_capacity",
            self.queue_capacity,
            "must not be negative",
        )
        require(
            self.keep_alive_duration >= 0,
            "keep_alive_duration",
            self.keep_alive_duration,
            "must not be negative",
        )


@dataclass(frozen=True)
class ThreadPoolBulkheadMetrics:
    """Point-in-time view of a thread-pool bulkhead."""

    core_thread_pool_size: int
    thread_pool_size: int
    max_thread_pool_size: int
    queue_depth: int
    queue_capacity: int
    remaining_queue_capacity: int
    active_thread_count: int


class _WorkItem:
    __slots__ = ("future", "fn", "args", "kwargs")

    def __init__(
        self, future: Future[Any], fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> None:
        self.future = future
        self.fn = fn
        self.args = args
        self.kwargs = kwargs


class ThreadPoolBulkhead:
    """Runs tasks on a dedicated, bounded pool of worker threads.

    Example:
        >>> with ThreadPoolBulkhead("reports", ThreadPoolBulkheadConfig(
        ...         core_thread_pool_size=2, max_thread_pool_size=4,
        ...         queue_capacity=10)) as pool:
        ...     future = pool.submit(build_report, 42)
        ...     report = future.result(timeout=5)
    """

    def __init__(self, name: str, config: ThreadPoolBulkheadConfig | None = None) -> None:
        """Initialize the pool; workers start lazily on submission.

        Args:
            name: Bulkhead name, carried by events, errors and thread names
            config: Pool configuration
        """
        self._name = name
        self._config = config or ThreadPoolBulkheadConfig()
        self._event_publisher = BulkheadEventPublisher()
        self._cond = threading.Condition()
        self._queue: deque[_WorkItem] = deque()
        self._workers: set[threading.Thread] = set()
        self._idle = 0
        self._active = 0
        self._shutdown = False
        self._thread_counter = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> ThreadPoolBulkheadConfig:
        return self._config

    @property
    def event_publisher(self) -> BulkheadEventPublisher:
        return self._event_publisher

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """Schedule ``fn(*args, **kwargs)`` on the pool.

        Returns:
            Future completing with the task's result or exception

        Raises:
            BulkheadFullError: If the pool and queue are saturated or the
                pool is shut down
        """
        future: Future[T] = Future()
        item = _WorkItem(future, fn, args, kwargs)
        accepted = False

        with self._cond:
            if self._shutdown:
                raise BulkheadFullError(
                    self._name, f"ThreadPoolBulkhead '{self._name}' is shut down"
                )
            if self._idle > len(self._queue) or (
                len(self._workers) >= self._config.core_thread_pool_size
                and len(self._queue) < self._idle + self._config.queue_capacity
            ):
                future.add_done_callback(functools.partial(self._discard_if_cancelled, item))
                self._queue.append(item)
                self._cond.notify()
                accepted = True
            elif len(self._workers) < self._config.max_thread_pool_size:
                self._spawn_locked(item)
                accepted = True

        if not accepted:
            self._event_publisher.publish(BulkheadOnCallRejectedEvent(name=self._name))
            raise BulkheadFullError(self._name)

        self._event_publisher.publish(BulkheadOnCallPermittedEvent(name=self._name))
        return future

    def decorate(self, fn: Callable[..., T]) -> Callable[..., Future[T]]:
        """Wrap ``fn`` so that calling it submits to the pool."""

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Future[T]:
            return self.submit(fn, *args, **kwargs)

        return wrapper

    def _discard_if_cancelled(self, item: _WorkItem, future: Future[Any]) -> None:
        if not future.cancelled():
            return
        with self._cond:
            try:
                self._queue.remove(item)
            except ValueError:
                pass

    def _spawn_locked(self, first: _WorkItem) -> None:
        self._thread_counter += 1
        thread = threading.Thread(
            target=self._work,
            args=(first,),
            name=f"fortify-bulkhead-{self._name}-{self._thread_counter}",
            daemon=True,
        )
        self._workers.add(thread)
        thread.start()
        logger.debug(
            "Bulkhead worker started",
            bulkhead=self._name,
            thread=thread.name,
            pool_size=len(self._workers),
        )

    def _work(self, first: _WorkItem) -> None:
        item: _WorkItem | None = first
        while item is not None:
            self._run(item)
            item = self._next_item()

    def _next_item(self) -> _WorkItem | None:
        current = threading.current_thread()
        with self._cond:
            self._idle += 1
            try:
                while not self._queue:
                    if self._shutdown:
                        self._workers.discard(current)
                        return None
                    if len(self._workers) > self._config.core_thread_pool_size:
                        timed_out = not self._cond.wait(self._config.keep_alive_duration)
                        if timed_out and not self._queue and (
                            len(self._workers) > self._config.core_thread_pool_size
                        ):
                            self._workers.discard(current)
                            logger.debug(
                                "Bulkhead worker retired",
                                bulkhead=self._name,
                                thread=current.name,
                                pool_size=len(self._workers),
                            )
                            return None
                    else:
                        self._cond.wait()
                return self._queue.popleft()
            finally:
                self._idle -= 1

    def _run(self, item: _WorkItem) -> None:
        if not item.future.set_running_or_notify_cancel():
            return
        with self._cond:
            self._active += 1
        try:
            result = item.fn(*item.args, **item.kwargs)
        except BaseException as e:
            item.future.set_exception(e)
        else:
            item.future.set_result(result)
        finally:
            with self._cond:
                self._active -= 1
            self._event_publisher.publish(BulkheadOnCallFinishedEvent(name=self._name))

    def metrics(self) -> ThreadPoolBulkheadMetrics:
        """Get pool metrics."""
        with self._cond:
            depth = len(self._queue)
            return ThreadPoolBulkheadMetrics(
                core_thread_pool_size=self._config.core_thread_pool_size,
                thread_pool_size=len(self._workers),
                max_thread_pool_size=self._config.max_thread_pool_size,
                queue_depth=depth,
                queue_capacity=self._config.queue_capacity,
                remaining_queue_capacity=max(0, self._config.queue_capacity - depth),
                active_thread_count=self._active,
            )

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks; queued tasks still run.

        Args:
            wait: Block until every worker has exited
        """
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()
            workers = list(self._workers)
        logger.debug("Bulkhead shutting down", bulkhead=self._name, workers=len(workers))
        if wait:
            for thread in workers:
                if thread is not threading.current_thread():
                    thread.join()

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def __enter__(self) -> ThreadPoolBulkhead:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)

    def __repr__(self) -> str:
        return (
            f"ThreadPoolBulkhead(name={self._name!r}, "
            f"workers={len(self._workers)}/{self._config.max_thread_pool_size}, "
            f"queued={len(self._queue)}/{self._config.queue_capacity})"
        )


class ThreadPoolBulkheadRegistry(Registry[ThreadPoolBulkhead, ThreadPoolBulkheadConfig]):
    """Registry of named thread-pool bulkheads."""

    config_class = ThreadPoolBulkheadConfig
    kind = "ThreadPoolBulkhead"

    def _create_entry(
        self, name: str, config: ThreadPoolBulkheadConfig
    ) -> ThreadPoolBulkhead:
        return ThreadPoolBulkhead(name, config)

    def bulkhead(
        self, name: str, config: ThreadPoolBulkheadConfig | str | None = None
    ) -> ThreadPoolBulkhead:
        """Get or create the thread-pool bulkhead ``name``."""
        return self.get(name, config)

    def close(self) -> None:
        """Shut down every registered pool."""
        for pool in self.all_entries():
            pool.shutdown(wait=True)
