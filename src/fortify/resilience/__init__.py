"""
Resilience layer - circuit breaking, bulkheads, rate limiting, retry and timeouts.

This module provides the fault-tolerance primitives:
- CircuitBreaker: Windowed CLOSED/OPEN/HALF_OPEN state machine
- Bulkhead: Semaphore-based concurrency limiting with FIFO waiters
- ThreadPoolBulkhead: Bounded worker pool with a bounded queue
- RateLimiter: Fixed refresh cycles with reservations
- Retry: Re-invocation with backoff
- TimeLimiter: Timeouts for futures and coroutines
- Fallback: Exception-to-value conversion
- Decorators: Layered composition of all of the above
"""

from fortify.resilience.bulkhead import (
    Bulkhead,
    BulkheadConfig,
    BulkheadEventPublisher,
    BulkheadMetrics,
    BulkheadOnCallFinishedEvent,
    BulkheadOnCallPermittedEvent,
    BulkheadOnCallRejectedEvent,
    BulkheadRegistry,
)
from fortify.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerEventPublisher,
    CircuitBreakerMetrics,
    CircuitBreakerOnCallNotPermittedEvent,
    CircuitBreakerOnErrorEvent,
    CircuitBreakerOnFailureRateExceededEvent,
    CircuitBreakerOnIgnoredErrorEvent,
    CircuitBreakerOnResetEvent,
    CircuitBreakerOnSlowCallRateExceededEvent,
    CircuitBreakerOnStateTransitionEvent,
    CircuitBreakerOnSuccessEvent,
    CircuitBreakerRegistry,
    CircuitState,
    Permission,
    RejectReason,
    SlidingWindowType,
)
from fortify.resilience.decorators import (
    DecorateAsync,
    DecorateCallable,
    DecoratedOperation,
    DecorateFuture,
    Decorators,
    Layer,
    decorate,
)
from fortify.resilience.fallback import Fallback
from fortify.resilience.rate_limiter import (
    RateLimiter,
    RateLimiterConfig,
    RateLimiterEventPublisher,
    RateLimiterMetrics,
    RateLimiterOnDrainedEvent,
    RateLimiterOnFailureEvent,
    RateLimiterOnSuccessEvent,
    RateLimiterRegistry,
)
from fortify.resilience.retry import (
    IntervalFunction,
    JitterStrategy,
    Retry,
    RetryConfig,
    RetryContext,
    RetryEventPublisher,
    RetryMetrics,
    RetryOnErrorEvent,
    RetryOnIgnoredErrorEvent,
    RetryOnRetryEvent,
    RetryOnSuccessEvent,
    RetryRegistry,
)
from fortify.resilience.sliding_window import (
    FixedSizeSlidingWindow,
    Outcome,
    SlidingTimeWindow,
    Snapshot,
)
from fortify.resilience.thread_pool_bulkhead import (
    ThreadPoolBulkhead,
    ThreadPoolBulkheadConfig,
    ThreadPoolBulkheadMetrics,
    ThreadPoolBulkheadRegistry,
)
from fortify.resilience.time_limiter import (
    TimeLimiter,
    TimeLimiterConfig,
    TimeLimiterEventPublisher,
    TimeLimiterOnErrorEvent,
    TimeLimiterOnSuccessEvent,
    TimeLimiterOnTimeoutEvent,
    TimeLimiterRegistry,
)

__all__ = [
    # Bulkhead
    "Bulkhead",
    "BulkheadConfig",
    "BulkheadEventPublisher",
    "BulkheadMetrics",
    "BulkheadOnCallFinishedEvent",
    "BulkheadOnCallPermittedEvent",
    "BulkheadOnCallRejectedEvent",
    "BulkheadRegistry",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerEventPublisher",
    "CircuitBreakerMetrics",
    "CircuitBreakerOnCallNotPermittedEvent",
    "CircuitBreakerOnErrorEvent",
    "CircuitBreakerOnFailureRateExceededEvent",
    "CircuitBreakerOnIgnoredErrorEvent",
    "CircuitBreakerOnResetEvent",
    "CircuitBreakerOnSlowCallRateExceededEvent",
    "CircuitBreakerOnStateTransitionEvent",
    "CircuitBreakerOnSuccessEvent",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Decorators
    "DecorateAsync",
    "DecorateCallable",
    "DecorateFuture",
    "DecoratedOperation",
    "Decorators",
    "Fallback",
    # Sliding windows
    "FixedSizeSlidingWindow",
    # Retry
    "IntervalFunction",
    "JitterStrategy",
    "Layer",
    "Outcome",
    "Permission",
    # Rate limiter
    "RateLimiter",
    "RateLimiterConfig",
    "RateLimiterEventPublisher",
    "RateLimiterMetrics",
    "RateLimiterOnDrainedEvent",
    "RateLimiterOnFailureEvent",
    "RateLimiterOnSuccessEvent",
    "RateLimiterRegistry",
    "RejectReason",
    "Retry",
    "RetryConfig",
    "RetryContext",
    "RetryEventPublisher",
    "RetryMetrics",
    "RetryOnErrorEvent",
    "RetryOnIgnoredErrorEvent",
    "RetryOnRetryEvent",
    "RetryOnSuccessEvent",
    "RetryRegistry",
    "SlidingTimeWindow",
    "SlidingWindowType",
    "Snapshot",
    # Thread-pool bulkhead
    "ThreadPoolBulkhead",
    "ThreadPoolBulkheadConfig",
    "ThreadPoolBulkheadMetrics",
    "ThreadPoolBulkheadRegistry",
    # Time limiter
    "TimeLimiter",
    "TimeLimiterConfig",
    "TimeLimiterEventPublisher",
    "TimeLimiterOnErrorEvent",
    "TimeLimiterOnSuccessEvent",
    "TimeLimiterOnTimeoutEvent",
    "TimeLimiterRegistry",
    "decorate",
]
