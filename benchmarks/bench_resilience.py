#!/usr/bin/env python3
"""
Resilience primitives performance benchmarks.

Measures the per-call overhead of each primitive and of a composed stack.
"""

import asyncio
import threading
import time
from collections.abc import Callable
from typing import Any

from fortify.resilience import (
    Bulkhead,
    BulkheadConfig,
    CircuitBreaker,
    CircuitBreakerConfig,
    RateLimiter,
    RateLimiterConfig,
    Retry,
    RetryConfig,
    decorate,
)


def noop_operation() -> str:
    """No-op operation for overhead measurement."""
    return "result"


async def async_noop_operation() -> str:
    return "result"


def _measure(name: str, call: Callable[[], Any], iterations: int) -> dict[str, Any]:
    start = time.perf_counter()
    for _ in range(iterations):
        call()
    elapsed = time.perf_counter() - start

    return {
        "name": name,
        "iterations": iterations,
        "elapsed_seconds": elapsed,
        "throughput_ops": iterations / elapsed,
        "latency_us": (elapsed / iterations) * 1_000_000,
    }


def benchmark_baseline(iterations: int = 100_000) -> dict[str, Any]:
    """Benchmark baseline call."""
    return _measure("Baseline (no resilience)", noop_operation, iterations)


def benchmark_circuit_breaker(iterations: int = 100_000) -> dict[str, Any]:
    """Benchmark circuit breaker overhead (closed state)."""
    breaker = CircuitBreaker("bench", CircuitBreakerConfig(sliding_window_size=100))
    call = breaker.decorate(noop_operation)
    return _measure("CircuitBreaker (closed)", call, iterations)


def benchmark_bulkhead(iterations: int = 100_000) -> dict[str, Any]:
    """Benchmark bulkhead overhead (uncontended)."""
    bulkhead = Bulkhead("bench", BulkheadConfig(max_concurrent_calls=10))
    return _measure("Bulkhead (uncontended)", bulkhead.decorate(noop_operation), iterations)


def benchmark_rate_limiter_high_limit(iterations: int = 100_000) -> dict[str, Any]:
    """Benchmark rate limiter overhead (limit never reached)."""
    limiter = RateLimiter("bench", RateLimiterConfig.per_second(10_000_000))
    return _measure("RateLimiter (high limit)", limiter.decorate(noop_operation), iterations)


def benchmark_retry(iterations: int = 100_000) -> dict[str, Any]:
    """Benchmark retry overhead (no retries triggered)."""
    retry = Retry("bench", RetryConfig(max_attempts=3))
    return _measure("Retry (no retries)", retry.decorate(noop_operation), iterations)


def benchmark_composed(iterations: int = 50_000) -> dict[str, Any]:
    """Benchmark a full decorator stack."""
    call = (
        decorate(noop_operation)
        .with_retry(Retry("bench"))
        .with_circuit_breaker(CircuitBreaker("bench"))
        .with_rate_limiter(RateLimiter("bench", RateLimiterConfig.per_second(10_000_000)))
        .with_bulkhead(Bulkhead("bench"))
        .with_fallback(Exception, lambda e: "fallback")
        .decorate()
    )
    return _measure("Composed stack", call, iterations)


def benchmark_contended_bulkhead(threads: int = 8, calls_per_thread: int = 5_000) -> dict[str, Any]:
    """Benchmark a waiting bulkhead shared by several threads."""
    bulkhead = Bulkhead("bench", BulkheadConfig(max_concurrent_calls=2, max_wait_duration=10.0))
    call = bulkhead.decorate(noop_operation)

    def worker() -> None:
        for _ in range(calls_per_thread):
            call()

    workers = [threading.Thread(target=worker) for _ in range(threads)]
    start = time.perf_counter()
    for thread in workers:
        thread.start()
    for thread in workers:
        thread.join()
    elapsed = time.perf_counter() - start

    iterations = threads * calls_per_thread
    return {
        "name": f"Bulkhead ({threads} threads, 2 permits)",
        "iterations": iterations,
        "elapsed_seconds": elapsed,
        "throughput_ops": iterations / elapsed,
        "latency_us": (elapsed / iterations) * 1_000_000,
    }


async def benchmark_async_breaker(iterations: int = 50_000) -> dict[str, Any]:
    """Benchmark circuit breaker around a coroutine."""
    breaker = CircuitBreaker("bench")

    start = time.perf_counter()
    for _ in range(iterations):
        await breaker.execute_async(async_noop_operation)
    elapsed = time.perf_counter() - start

    return {
        "name": "CircuitBreaker (async)",
        "iterations": iterations,
        "elapsed_seconds": elapsed,
        "throughput_ops": iterations / elapsed,
        "latency_us": (elapsed / iterations) * 1_000_000,
    }


def run_benchmarks() -> None:
    """Run all benchmarks and print results."""
    print("=" * 60)
    print("Resilience Benchmarks")
    print("=" * 60)
    print()

    benchmarks = [
        benchmark_baseline,
        benchmark_circuit_breaker,
        benchmark_bulkhead,
        benchmark_rate_limiter_high_limit,
        benchmark_retry,
        benchmark_composed,
    ]

    baseline_latency = 0.0

    for bench in benchmarks:
        result = bench()
        if result["name"].startswith("Baseline"):
            baseline_latency = result["latency_us"]

        overhead = ""
        if baseline_latency > 0 and not result["name"].startswith("Baseline"):
            overhead_us = result["latency_us"] - baseline_latency
            overhead = f" (+{overhead_us:.2f}µs)"

        print(f"{result['name']}:")
        print(f"  Throughput: {result['throughput_ops']:.0f} ops/sec")
        print(f"  Latency: {result['latency_us']:.2f} µs/op{overhead}")
        print()

    for result in (benchmark_contended_bulkhead(), asyncio.run(benchmark_async_breaker())):
        print(f"{result['name']}:")
        print(f"  Throughput: {result['throughput_ops']:.0f} ops/sec")
        print()


if __name__ == "__main__":
    run_benchmarks()
