"""错误基类：提供分层错误体系和结构化错误上下文。

Base error classes for fortify.

Provides a layered error hierarchy:
- FortifyError: Base class for all library errors
- ConfigurationError: Invalid configuration values (raised at construction)
- CallNotPermittedError: Circuit breaker rejected the call
- BulkheadFullError: Bulkhead could not admit the call
- RequestNotPermittedError: Rate limiter rejected the call
- MaxRetriesExceededError: Retry gave up on a retryable result
- TimeoutExceededError: Time limiter expired before the call completed
- OperationCancelledError: A blocking wait was cancelled
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fortify.core.cancel import CancelReason


@dataclass
class ErrorContext:
    """Structured error context for diagnostics.

    Provides actionable information for debugging and error handling.
    """

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'circuit_breaker', 'bulkhead', 'config')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class FortifyError(Exception):
    """Base class for all fortify errors.

    All errors raised by the library itself inherit from this class, making
    it easy to tell admission failures apart from errors raised by the
    decorated operation.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> FortifyError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self


class ConfigurationError(FortifyError, ValueError):
    """Invalid configuration value.

    Raised synchronously while building a configuration or a registry
    entry; the primitive is never created.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        field: str | None = None,
        value: Any = None,
    ) -> None:
        ctx = context or ErrorContext(source="config")
        if field:
            ctx.details["field"] = field
        if value is not None:
            ctx.details["value"] = value
        super().__init__(message, ctx)
        self.field = field
        self.value = value


class CallNotPermittedError(FortifyError):
    """Raised when a circuit breaker does not permit a call.

    Covers an OPEN or FORCED_OPEN circuit as well as a HALF_OPEN circuit
    whose trial calls are used up.
    """

    def __init__(
        self,
        name: str,
        state: str,
        reason: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="circuit_breaker")
        ctx.details["state"] = state
        if reason:
            ctx.details["reason"] = reason
        super().__init__(
            f"CircuitBreaker '{name}' is {state} and does not permit further calls",
            ctx,
        )
        self.name = name
        self.state = state
        self.reason = reason


class BulkheadFullError(FortifyError):
    """Raised when a bulkhead is saturated and cannot admit the call."""

    def __init__(self, name: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Bulkhead '{name}' is full and does not permit further calls",
            ErrorContext(source="bulkhead"),
        )
        self.name = name


class RequestNotPermittedError(FortifyError):
    """Raised when a rate limiter cannot grant a permission in time."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"RateLimiter '{name}' does not permit further calls",
            ErrorContext(source="rate_limiter"),
        )
        self.name = name


class MaxRetriesExceededError(FortifyError):
    """Raised when retries are exhausted on a retryable result."""

    def __init__(
        self,
        name: str,
        attempts: int,
        last_result: Any = None,
    ) -> None:
        ctx = ErrorContext(source="retry")
        ctx.details["attempts"] = attempts
        super().__init__(
            f"Retry '{name}' has exhausted all attempts ({attempts})",
            ctx,
        )
        self.name = name
        self.attempts = attempts
        self.last_result = last_result


class TimeoutExceededError(FortifyError, TimeoutError):
    """Raised when a time limiter expires before the call completes."""

    def __init__(self, name: str, timeout: float) -> None:
        ctx = ErrorContext(source="time_limiter")
        ctx.details["timeout"] = timeout
        super().__init__(
            f"TimeLimiter '{name}' recorded a timeout after {timeout}s",
            ctx,
        )
        self.name = name
        self.timeout = timeout


class OperationCancelledError(FortifyError):
    """Raised when a blocking wait is aborted through a cancel token."""

    def __init__(self, reason: CancelReason | None = None) -> None:
        super().__init__(
            f"Operation cancelled ({reason.value if reason else 'unknown'})",
            ErrorContext(source="cancel"),
        )
        self.reason = reason
