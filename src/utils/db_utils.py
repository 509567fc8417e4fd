"""asyncpg helpers for the chat store.

- ``create_database_pool``: pool with per-connection timeouts and jsonb codecs
- ``acquire_connection``: pool checkout bounded by a timeout
- ``with_retry``: exponential backoff for connection-level failures
- ``check_pool_health`` / ``graceful_pool_close``: lifespan and probe support
"""

from __future__ import annotations

import asyncio
import functools
import json
import random

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import asyncpg

from utils.json_utils import json_compact
from utils.logger import logger

P = ParamSpec("P")
T = TypeVar("T")


class DatabaseError(Exception):
    """Connection-level failure below the chat store."""


class ConnectionPoolExhausted(DatabaseError):
    """No connection could be obtained in time."""


RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionPoolExhausted,
)


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
) -> asyncpg.Pool:
    """Open the pool, failing with ``ConnectionPoolExhausted`` if the server is unreachable."""
    timeout_ms = int(command_timeout * 1000)

    async def setup(conn: asyncpg.Connection) -> None:
        await conn.execute(f"SET statement_timeout = {timeout_ms}")
        await conn.set_type_codec("jsonb", encoder=json_compact, decoder=json.loads, schema="pg_catalog")

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
                init=setup,
            ),
            timeout=connection_timeout,
        )
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"Database did not accept connections within {connection_timeout}s") from e
    except (OSError, asyncpg.PostgresError) as e:
        raise ConnectionPoolExhausted(f"Could not open database pool: {e}") from e
    if pool is None:
        raise ConnectionPoolExhausted("Could not open database pool")
    return pool


@asynccontextmanager
async def acquire_connection(
    pool: asyncpg.Pool, *, timeout: float | None = None
) -> AsyncGenerator[asyncpg.Connection, None]:
    try:
        async with pool.acquire(timeout=timeout) as conn:
            yield conn
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"No database connection free within {timeout}s") from e


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.25,
    max_delay: float = 4.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry a store call on ``RETRYABLE_ERRORS`` with jittered exponential backoff.

    Statement-level errors (constraint violations, bad SQL) are never retried.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except RETRYABLE_ERRORS as e:
                    if attempt >= max_attempts:
                        logger.error(f"{func.__name__} failed after {attempt} attempts: {e}")
                        raise
                    delay = min(base_delay * 2 ** (attempt - 1) + random.uniform(0, base_delay), max_delay)
                    logger.warning(f"{func.__name__} attempt {attempt} failed, retrying in {delay:.2f}s: {e}")
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    try:
        async with acquire_connection(pool, timeout=5.0) as conn:
            healthy = await conn.fetchval("SELECT 1") == 1
    except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError, DatabaseError) as e:
        logger.warning(f"Database health check failed: {e}")
        healthy = False

    size, idle = pool.get_size(), pool.get_idle_size()
    return {
        "healthy": healthy,
        "pool_size": size,
        "pool_max_size": pool.get_max_size(),
        "free_connections": idle,
        "used_connections": size - idle,
    }


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Give checked-out connections ``timeout`` seconds to come back, then close."""
    deadline = asyncio.get_running_loop().time() + timeout
    while pool.get_size() > pool.get_idle_size():
        if asyncio.get_running_loop().time() >= deadline:
            logger.warning(f"Closing pool with {pool.get_size() - pool.get_idle_size()} connections still in use")
            break
        await asyncio.sleep(0.1)
    await pool.close()
