"""
Fallback for graceful degradation.

A fallback is the terminal layer of a decorated operation: configured
exception types raised by the inner layers are converted into a value
computed by a handler that receives the exception.
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from fortify.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from concurrent.futures import Future

logger = get_logger(__name__)

T = TypeVar("T")


class Fallback(Generic[T]):
    """Converts selected exceptions into a fallback value.

    Example:
        >>> fallback = Fallback(
        ...     lambda e: "cached response",
        ...     exception_types=(CallNotPermittedError, BulkheadFullError),
        ... )
        >>> fallback.execute(call_backend)
        'cached response'
    """

    def __init__(
        self,
        handler: Callable[[BaseException], T],
        exception_types: type[BaseException] | Iterable[type[BaseException]] = (Exception,),
        name: str = "fallback",
    ) -> None:
        """Initialize fallback.

        Args:
            handler: Computes the replacement value from the exception
            exception_types: Exception types converted by the handler
            name: Identifier used in logs
        """
        if isinstance(exception_types, type):
            exception_types = (exception_types,)
        self._handler = handler
        self._exception_types = tuple(exception_types)
        self._name = name

    @classmethod
    def of_value(
        cls,
        value: T,
        exception_types: type[BaseException] | Iterable[type[BaseException]] = (Exception,),
    ) -> Fallback[T]:
        """Fallback returning a constant value."""
        return cls(lambda _error: value, exception_types)

    @property
    def name(self) -> str:
        return self._name

    @property
    def exception_types(self) -> tuple[type[BaseException], ...]:
        return self._exception_types

    def handles(self, error: BaseException) -> bool:
        """Check whether ``error`` is converted by this fallback."""
        return isinstance(error, self._exception_types)

    def recover(self, error: BaseException) -> T:
        """Produce the fallback value for a handled error."""
        logger.debug(
            "Fallback recovering from error",
            fallback=self._name,
            error_type=type(error).__name__,
        )
        return self._handler(error)

    def execute(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute ``operation``, converting handled exceptions."""
        try:
            return operation(*args, **kwargs)
        except Exception as e:
            if not self.handles(e):
                raise
            return self.recover(e)

    def decorate(self, operation: Callable[..., T]) -> Callable[..., T]:
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
        try:
            return await operation(*args, **kwargs)
        except Exception as e:
            if not self.handles(e):
                raise
            return self.recover(e)

    def decorate_future(
        self, supplier: Callable[..., Future[T]]
    ) -> Callable[..., Future[T]]:
        """Wrap a future supplier; handled failures complete with the fallback value."""
        from concurrent.futures import Future

        @functools.wraps(supplier)
        def wrapper(*args: Any, **kwargs: Any) -> Future[T]:
            recovered: Future[T] = Future()

            def settle(error: BaseException) -> None:
                if not isinstance(error, Exception) or not self.handles(error):
                    recovered.set_exception(error)
                    return
                try:
                    recovered.set_result(self.recover(error))
                except Exception as handler_error:
                    recovered.set_exception(handler_error)

            try:
                source = supplier(*args, **kwargs)
            except Exception as e:
                settle(e)
                return recovered

            def on_done(done: Future[T]) -> None:
                if done.cancelled():
                    recovered.cancel()
                    return
                error = done.exception()
                if error is None:
                    recovered.set_result(done.result())
                else:
                    settle(error)

            source.add_done_callback(on_done)
            return recovered

        return wrapper

    def __repr__(self) -> str:
        types = ", ".join(t.__name__ for t in self._exception_types)
        return f"Fallback(name={self._name!r}, handles=({types}))"
