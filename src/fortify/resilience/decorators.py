"""装饰器组合：将熔断、隔离、限流、重试和降级按层叠加到一个操作上。

Decorator composition for stacking primitives around an operation.

Primitives are applied in the order they are added and each new one wraps
everything added before it, so the last primitive added is the outermost:

    decorate(f).with_retry(r).with_circuit_breaker(cb)

enters the circuit breaker first, then the retry, then ``f``. Admission
failures (``CallNotPermittedError``, ``BulkheadFullError``,
``RequestNotPermittedError``) propagate outward without invoking inner
layers.

Three stages share the same layering rules:
- DecorateCallable: plain synchronous callables
- DecorateFuture: callables returning ``concurrent.futures.Future``
- DecorateAsync: coroutine functions
"""

from __future__ import annotations

import functools
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from fortify.errors import BulkheadFullError
from fortify.resilience.fallback import Fallback

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from fortify.resilience.bulkhead import Bulkhead
    from fortify.resilience.circuit_breaker import CircuitBreaker
    from fortify.resilience.rate_limiter import RateLimiter
    from fortify.resilience.retry import Retry
    from fortify.resilience.thread_pool_bulkhead import ThreadPoolBulkhead
    from fortify.resilience.time_limiter import TimeLimiter

T = TypeVar("T")


@dataclass(frozen=True)
class Layer:
    """One primitive in a decorated operation.

    Attributes:
        kind: Primitive kind, e.g. ``"circuit_breaker"``
        name: Name of the primitive instance
        primitive: The primitive itself
    """

    kind: str
    name: str
    primitive: Any

    def __str__(self) -> str:
        return f"{self.kind}:{self.name}"


class DecoratedOperation(Generic[T]):
    """A built stack of primitives around an operation.

    Example:
        >>> operation = decorate(fetch).with_retry(retry).build()
        >>> operation.invoke("key")
        >>> [str(layer) for layer in operation.layers]
        ['retry:backend']
    """

    def __init__(self, operation: Callable[..., T], layers: Iterable[Layer]) -> None:
        self._operation = operation
        self._layers = tuple(layers)
        functools.update_wrapper(self, operation)

    @property
    def layers(self) -> tuple[Layer, ...]:
        """Layers from innermost to outermost."""
        return self._layers

    def invoke(self, *args: Any, **kwargs: Any) -> T:
        """Run the operation through every layer."""
        return self._operation(*args, **kwargs)

    def __call__(self, *args: Any, **kwargs: Any) -> T:
        return self.invoke(*args, **kwargs)

    def __repr__(self) -> str:
        layers = " -> ".join(str(layer) for layer in reversed(self._layers)) or "none"
        return f"DecoratedOperation(outermost first: {layers})"


class _Stage(Generic[T]):
    def __init__(self, operation: Callable[..., Any], layers: Iterable[Layer] = ()) -> None:
        self._operation = operation
        self._layers = list(layers)

    def _push(self, operation: Callable[..., Any], kind: str, primitive: Any) -> None:
        self._operation = operation
        self._layers.append(Layer(kind, getattr(primitive, "name", kind), primitive))

    @property
    def layers(self) -> tuple[Layer, ...]:
        return tuple(self._layers)

    def decorate(self) -> Callable[..., Any]:
        """Return the decorated operation as a plain callable."""
        return self._operation

    def build(self) -> DecoratedOperation[Any]:
        """Freeze the stack into a ``DecoratedOperation``."""
        return DecoratedOperation(self._operation, self._layers)


class DecorateCallable(_Stage[T]):
    """Builder for synchronous callables."""

    def with_circuit_breaker(self, circuit_breaker: CircuitBreaker) -> DecorateCallable[T]:
        self._push(circuit_breaker.decorate(self._operation), "circuit_breaker", circuit_breaker)
        return self

    def with_bulkhead(self, bulkhead: Bulkhead) -> DecorateCallable[T]:
        self._push(bulkhead.decorate(self._operation), "bulkhead", bulkhead)
        return self

    def with_rate_limiter(self, rate_limiter: RateLimiter, permits: int = 1) -> DecorateCallable[T]:
        """Take ``permits`` permissions from ``rate_limiter`` per call."""
        self._push(rate_limiter.decorate(self._operation, permits), "rate_limiter", rate_limiter)
        return self

    def with_retry(self, retry: Retry) -> DecorateCallable[T]:
        self._push(retry.decorate(self._operation), "retry", retry)
        return self

    def with_fallback(
        self,
        fallback: Fallback[T] | type[BaseException] | Iterable[type[BaseException]],
        handler: Callable[[BaseException], T] | None = None,
    ) -> DecorateCallable[T]:
        """Convert exceptions into a fallback value.

        Accepts a ``Fallback`` or exception types plus a handler.
        """
        fallback = _as_fallback(fallback, handler)
        self._push(fallback.decorate(self._operation), "fallback", fallback)
        return self

    def with_thread_pool_bulkhead(self, bulkhead: ThreadPoolBulkhead) -> DecorateFuture[T]:
        """Run the stack so far on ``bulkhead``; later layers see futures.

        A saturated pool yields a future failed with ``BulkheadFullError``.
        """
        inner = self._operation

        def submit(*args: Any, **kwargs: Any) -> Future[T]:
            try:
                return bulkhead.submit(inner, *args, **kwargs)
            except BulkheadFullError as e:
                failed: Future[T] = Future()
                failed.set_exception(e)
                return failed

        stage: DecorateFuture[T] = DecorateFuture(submit, self._layers)
        stage._push(submit, "thread_pool_bulkhead", bulkhead)
        return stage

    def get(self, *args: Any, **kwargs: Any) -> T:
        """Invoke the decorated operation immediately."""
        return self._operation(*args, **kwargs)


class DecorateFuture(_Stage[T]):
    """Builder for callables returning ``concurrent.futures.Future``."""

    def with_time_limiter(self, time_limiter: TimeLimiter) -> DecorateFuture[T]:
        self._push(time_limiter.decorate_future(self._operation), "time_limiter", time_limiter)
        return self

    def with_circuit_breaker(self, circuit_breaker: CircuitBreaker) -> DecorateFuture[T]:
        self._push(
            circuit_breaker.decorate_future(self._operation), "circuit_breaker", circuit_breaker
        )
        return self

    def with_bulkhead(self, bulkhead: Bulkhead) -> DecorateFuture[T]:
        self._push(bulkhead.decorate_future(self._operation), "bulkhead", bulkhead)
        return self

    def with_fallback(
        self,
        fallback: Fallback[T] | type[BaseException] | Iterable[type[BaseException]],
        handler: Callable[[BaseException], T] | None = None,
    ) -> DecorateFuture[T]:
        fallback = _as_fallback(fallback, handler)
        self._push(fallback.decorate_future(self._operation), "fallback", fallback)
        return self

    def get(self, *args: Any, **kwargs: Any) -> Future[T]:
        """Invoke the decorated operation; returns its future."""
        return self._operation(*args, **kwargs)


class DecorateAsync(_Stage[T]):
    """Builder for coroutine functions."""

    def _push_async(self, execute: Callable[..., Awaitable[T]], kind: str, primitive: Any) -> None:
        inner = self._operation

        @functools.wraps(inner)
        async def layer(*args: Any, **kwargs: Any) -> T:
            return await execute(inner, *args, **kwargs)

        self._push(layer, kind, primitive)

    def with_circuit_breaker(self, circuit_breaker: CircuitBreaker) -> DecorateAsync[T]:
        self._push_async(circuit_breaker.execute_async, "circuit_breaker", circuit_breaker)
        return self

    def with_bulkhead(self, bulkhead: Bulkhead) -> DecorateAsync[T]:
        self._push_async(bulkhead.execute_async, "bulkhead", bulkhead)
        return self

    def with_rate_limiter(self, rate_limiter: RateLimiter) -> DecorateAsync[T]:
        self._push_async(rate_limiter.execute_async, "rate_limiter", rate_limiter)
        return self

    def with_retry(self, retry: Retry) -> DecorateAsync[T]:
        self._push_async(retry.execute_async, "retry", retry)
        return self

    def with_time_limiter(self, time_limiter: TimeLimiter) -> DecorateAsync[T]:
        self._push_async(time_limiter.execute_async, "time_limiter", time_limiter)
        return self

    def with_fallback(
        self,
        fallback: Fallback[T] | type[BaseException] | Iterable[type[BaseException]],
        handler: Callable[[BaseException], T] | None = None,
    ) -> DecorateAsync[T]:
        fallback = _as_fallback(fallback, handler)
        self._push_async(fallback.execute_async, "fallback", fallback)
        return self

    async def get(self, *args: Any, **kwargs: Any) -> T:
        """Await the decorated operation immediately."""
        return await self._operation(*args, **kwargs)


def _as_fallback(
    fallback: Fallback[T] | type[BaseException] | Iterable[type[BaseException]],
    handler: Callable[[BaseException], T] | None,
) -> Fallback[T]:
    if isinstance(fallback, Fallback):
        return fallback
    if handler is None:
        raise TypeError("with_fallback() needs a handler when given exception types")
    return Fallback(handler, fallback)


class Decorators:
    """Entry points of the decorator builders.

    Example:
        >>> operation = (
        ...     Decorators.of_callable(call_backend)
        ...     .with_circuit_breaker(breaker)
        ...     .with_retry(retry)
        ...     .with_fallback((CallNotPermittedError,), lambda e: "cached")
        ...     .build()
        ... )
        >>> operation.invoke()
    """

    @staticmethod
    def of_callable(operation: Callable[..., T]) -> DecorateCallable[T]:
        return DecorateCallable(operation)

    @staticmethod
    def of_future_supplier(supplier: Callable[..., Future[T]]) -> DecorateFuture[T]:
        return DecorateFuture(supplier)

    @staticmethod
    def of_async(operation: Callable[..., Awaitable[T]]) -> DecorateAsync[T]:
        return DecorateAsync(operation)


def decorate(operation: Callable[..., T]) -> DecorateCallable[T]:
    """Start decorating a synchronous callable."""
    return DecorateCallable(operation)
