"""熔断、隔离、限流与重试：面向多线程调用方的容错原语。

fortify: Fault-tolerance primitives for concurrent Python code.

Circuit breakers, bulkheads, rate limiters, retries and time limiters that
can be used alone or stacked around an operation, observed through
per-primitive event publishers.
"""
from __future__ import annotations

from fortify.core import (
    SYSTEM_CLOCK,
    CancelReason,
    CancelToken,
    Clock,
    EventBuffer,
    ManualClock,
    SystemClock,
)
from fortify.errors import (
    BulkheadFullError,
    CallNotPermittedError,
    ConfigurationError,
    FortifyError,
    MaxRetriesExceededError,
    OperationCancelledError,
    RequestNotPermittedError,
    TimeoutExceededError,
)
from fortify.resilience import (
    Bulkhead,
    BulkheadConfig,
    BulkheadRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    Decorators,
    Fallback,
    IntervalFunction,
    RateLimiter,
    RateLimiterConfig,
    RateLimiterRegistry,
    Retry,
    RetryConfig,
    RetryRegistry,
    SlidingWindowType,
    ThreadPoolBulkhead,
    ThreadPoolBulkheadConfig,
    ThreadPoolBulkheadRegistry,
    TimeLimiter,
    TimeLimiterConfig,
    TimeLimiterRegistry,
    decorate,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "SYSTEM_CLOCK",
    # Primitives
    "Bulkhead",
    "BulkheadConfig",
    # Errors
    "BulkheadFullError",
    "BulkheadRegistry",
    "CallNotPermittedError",
    "CancelReason",
    "CancelToken",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "Clock",
    "ConfigurationError",
    # Composition
    "Decorators",
    "EventBuffer",
    "Fallback",
    "FortifyError",
    "IntervalFunction",
    "ManualClock",
    "MaxRetriesExceededError",
    "OperationCancelledError",
    "RateLimiter",
    "RateLimiterConfig",
    "RateLimiterRegistry",
    "RequestNotPermittedError",
    "Retry",
    "RetryConfig",
    "RetryRegistry",
    "SlidingWindowType",
    "SystemClock",
    "ThreadPoolBulkhead",
    "ThreadPoolBulkheadConfig",
    "ThreadPoolBulkheadRegistry",
    "TimeLimiter",
    "TimeLimiterConfig",
    "TimeLimiterRegistry",
    "TimeoutExceededError",
    "decorate",
    # Version
    "__version__",
]
