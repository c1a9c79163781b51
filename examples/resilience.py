#!/usr/bin/env python3
"""
Resilience patterns example.

This example demonstrates how to protect a flaky backend with:
- A circuit breaker shared through a registry
- Retry with exponential backoff
- Rate limiting
- A fallback value when the circuit is open
- Structured event logging and Prometheus metrics

Usage:
    python examples/resilience.py
"""

import asyncio
import random

from fortify.errors import CallNotPermittedError
from fortify.resilience import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    Decorators,
    IntervalFunction,
    RateLimiterConfig,
    RateLimiterRegistry,
    RetryConfig,
    RetryRegistry,
    TimeLimiter,
    TimeLimiterConfig,
    decorate,
)
from fortify.telemetry import EventLogger, FortifyLogger, LogLevel, MetricsCollector


def flaky_backend(order_id: int) -> str:
    """Backend that fails most of the time."""
    if random.random() < 0.7:
        raise ConnectionError("inventory service unavailable")
    return f"order {order_id}: in stock"


def sync_example() -> None:
    """Compose primitives around a synchronous call."""
    print("=== Synchronous stack ===")

    FortifyLogger.configure(level=LogLevel.INFO, format="text")

    breakers = CircuitBreakerRegistry.of_config(
        CircuitBreakerConfig(
            sliding_window_size=10,
            minimum_number_of_calls=5,
            wait_duration_in_open_state=2.0,
        )
    )
    retries = RetryRegistry.of_config(
        RetryConfig(
            max_attempts=3,
            interval_function=IntervalFunction.of_exponential_backoff(0.05, 2.0),
            retry_exceptions=(ConnectionError,),
        )
    )
    limiters = RateLimiterRegistry.of_config(RateLimiterConfig.per_second(20))

    breaker = breakers.circuit_breaker("inventory")
    collector = MetricsCollector()
    collector.bind_circuit_breaker(breaker)
    EventLogger().attach(breaker.event_publisher)

    check_stock = (
        decorate(flaky_backend)
        .with_retry(retries.retry("inventory"))
        .with_circuit_breaker(breaker)
        .with_rate_limiter(limiters.rate_limiter("inventory"))
        .with_fallback((CallNotPermittedError, ConnectionError), lambda e: "stock unknown")
        .build()
    )
    print(f"Stack: {check_stock!r}")

    for order_id in range(15):
        print(f"  {check_stock(order_id)}  [circuit: {breaker.state.value}]")

    print()
    print(collector.to_prometheus())
    breakers.close()


async def async_example() -> None:
    """Compose primitives around a coroutine."""
    print("=== Async stack ===")

    async def fetch_price(sku: str) -> float:
        await asyncio.sleep(0.01)
        return 9.99

    retries = RetryRegistry.of_defaults()
    get_price = (
        Decorators.of_async(fetch_price)
        .with_time_limiter(TimeLimiter("pricing", TimeLimiterConfig(timeout_duration=0.5)))
        .with_retry(retries.retry("pricing"))
        .build()
    )
    prices = await asyncio.gather(*(get_price(f"sku-{n}") for n in range(5)))
    print(f"  prices: {prices}")


if __name__ == "__main__":
    sync_example()
    print()
    asyncio.run(async_example())
