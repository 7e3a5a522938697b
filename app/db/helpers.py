# app/db/helpers.py
"""
Query helpers for the repository layer.

All helpers translate driver errors into DatabaseError. `recoverable`
tells callers (the classifier worker in particular) whether retrying the
job later can succeed: connection loss is recoverable, constraint and
data errors are not.
"""

import asyncio
import functools
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Raised by repositories when the result/user store fails."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    connection: psycopg.AsyncConnection | None,
) -> AsyncGenerator[psycopg.AsyncCursor, None]:
    if connection is not None:
        async with connection.cursor() as cur:
            yield cur
        return
    async with await get_db_connection() as conn:
        async with conn.cursor() as cur:
            yield cur


async def _run(
    operation: str,
    query: str,
    params: tuple,
    connection: psycopg.AsyncConnection | None,
    collect,
):
    try:
        async with _cursor(connection) as cur:
            await cur.execute(query, params)
            return await collect(cur)
    except psycopg.OperationalError:
        # Left for with_db_retry to back off on
        raise
    except psycopg.Error as e:
        logger.error(f"Database {operation} error", query=query[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}",
            operation=operation,
            recoverable=not isinstance(e, (psycopg.IntegrityError, psycopg.DataError)),
        ) from e


async def _rowcount(cur: psycopg.AsyncCursor) -> int:
    return cur.rowcount


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """Single row as a dict (pool connections use dict_row), or None."""
    return await _run("fetch_one", query, params, connection, lambda cur: cur.fetchone())


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    return await _run("fetch_all", query, params, connection, lambda cur: cur.fetchall())


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row, e.g. COUNT(*) or EXISTS(...)."""
    row = await fetch_one(query, params, connection=connection)
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a write and return the affected row count."""
    return await _run("execute", query, params, connection, _rowcount)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository call on connection-level failures with exponential
    backoff (base_delay * 2**attempt). Once retries are exhausted the
    failure surfaces as a recoverable DatabaseError so the worker can
    reschedule the job instead of failing it.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except psycopg.OperationalError as e:
                    if attempt == max_retries:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=max_retries + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=True,
                        ) from e

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
