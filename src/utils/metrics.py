"""
Prometheus metrics configuration for Quill Chat.

Defines custom metrics and instrumentation helpers.
"""

from __future__ import annotations

import functools
import time

from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import asyncpg

from prometheus_client import Counter, Gauge, Histogram

P = ParamSpec("P")
T = TypeVar("T")

# namespace_subsystem_name_unit
NAMESPACE = "quillchat"

# ============================================================================
# HTTP Metrics
# ============================================================================

request_duration_seconds = Histogram(
    f"{NAMESPACE}_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path", "status"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_total = Counter(
    f"{NAMESPACE}_http_requests_total",
    "Total HTTP requests handled",
    ["method", "path", "status"],
)

# ============================================================================
# Turn Metrics
# ============================================================================

turns_active = Gauge(
    f"{NAMESPACE}_turns_active",
    "Number of chat turns currently streaming",
)

turns_total = Counter(
    f"{NAMESPACE}_turns_total",
    "Total chat turns by final state",
    ["outcome"],  # "done", "errored", "cancelled"
)

turn_duration_seconds = Histogram(
    f"{NAMESPACE}_turn_duration_seconds",
    "Wall time of a chat turn from first model call to terminal frame",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

stream_events_total = Counter(
    f"{NAMESPACE}_stream_events_total",
    "Stream events delivered to clients",
    ["type"],
)

# ============================================================================
# Model Metrics
# ============================================================================

model_steps_total = Counter(
    f"{NAMESPACE}_model_steps_total",
    "Model generation steps (one streamed completion each)",
    ["model"],
)

model_errors_total = Counter(
    f"{NAMESPACE}_model_errors_total",
    "Upstream model failures",
    ["model", "error_type"],
)

# ============================================================================
# Tool Metrics
# ============================================================================

tool_calls_total = Counter(
    f"{NAMESPACE}_tool_calls_total",
    "Total number of tool calls executed",
    ["tool_name", "status"],  # status: "success", "error", "cancelled"
)

tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_tool_call_duration_seconds",
    "Tool call execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ============================================================================
# Database Metrics
# ============================================================================

db_pool_size = Gauge(
    f"{NAMESPACE}_db_pool_size",
    "Current size of the database connection pool",
)

db_pool_connections = Gauge(
    f"{NAMESPACE}_db_pool_connections",
    "Number of database connections by state",
    ["state"],  # "free" or "used"
)

db_query_duration_seconds = Histogram(
    f"{NAMESPACE}_db_query_duration_seconds",
    "Database query duration in seconds",
    ["query_type"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

persistence_failures_total = Counter(
    f"{NAMESPACE}_persistence_failures_total",
    "Store operations that failed after retries",
    ["operation"],
)


def update_db_pool_metrics(pool: asyncpg.Pool) -> None:
    """Refresh pool gauges from a live asyncpg pool."""
    size = pool.get_size()
    idle = pool.get_idle_size()
    db_pool_size.set(size)
    db_pool_connections.labels(state="free").set(idle)
    db_pool_connections.labels(state="used").set(size - idle)


def track_query(query_type: str) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator recording query duration under ``query_type``.

    Example:
        @track_query("insert")
        async def save_chat(self, ...): ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                db_query_duration_seconds.labels(query_type=query_type).observe(time.perf_counter() - start)

        return wrapper

    return decorator


def record_tool_call(tool_name: str, status: str, duration: float) -> None:
    tool_calls_total.labels(tool_name=tool_name, status=status).inc()
    tool_call_duration_seconds.labels(tool_name=tool_name).observe(duration)


def record_turn(outcome: str, duration: float | None = None) -> None:
    turns_total.labels(outcome=outcome).inc()
    if duration is not None:
        turn_duration_seconds.observe(duration)
