# app/db/pool.py
"""
PostgreSQL connection pool (psycopg_pool) shared by every process role.

The API uses it for analytics, presence and ratings; the classifier worker
for result upserts; the sweeper and metrics-sync loops for their periodic
queries. Each process opens one pool in its startup hook and closes it on
shutdown. Connections are tagged with the process role so they can be told
apart in pg_stat_activity.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger, get_process_role

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
# Readiness fails once this share of connections is checked out
SATURATION_PERCENT = 90


class DatabasePoolManager:
    def __init__(self, application_name: str = "feedback-pulse"):
        self.pool: AsyncConnectionPool | None = None
        self.application_name = application_name
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _connection_name(self) -> str:
        role = get_process_role() or "unknown"
        return f"{self.application_name}-{role}-{settings.environment}"

    async def initialize(self) -> None:
        """Open the pool and verify one round trip before serving traffic."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        pool_config = settings.get_db_pool_config()
        self.pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_config,
        )
        try:
            await self.pool.open()
            await self.pool.wait()
            self._initialized = True
            await self._round_trip()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            try:
                await self.pool.close()
            except Exception as cleanup_error:
                logger.warning("Error closing half-open pool", error=str(cleanup_error))
            self.pool = None
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool initialized",
            connection_name=self._connection_name(),
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        # Every repository statement is a single write or read
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(sql.Literal(self._connection_name()))
        )
        # processed_at windows and presence cutoffs are computed in UTC
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '60s'")

    async def _round_trip(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database round trip returned an unexpected result")

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection from the pool.

        Usage:
            async with db_pool.connection() as conn:
                await conn.execute("SELECT 1")
        """
        if not self._initialized or self._closed:
            raise RuntimeError("Database pool not available")

        try:
            async with self.pool.connection() as conn:
                yield conn
        except Exception as e:
            logger.error("Database connection error", error=str(e), error_type=type(e).__name__)
            raise

    async def health_check(self) -> dict[str, Any]:
        """
        Readiness view of the pool: a timed round trip plus utilization.
        Unhealthy when the pool is closed, the round trip fails, or the pool
        is saturated.
        """
        if not self._initialized or self._closed:
            return {"healthy": False, "error": "Pool not available"}

        try:
            start = time.perf_counter()
            await self._round_trip()
            round_trip_ms = (time.perf_counter() - start) * 1000
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {"healthy": False, "error": f"{type(e).__name__}: {e}"}

        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        available = stats.get("pool_available", 0)
        utilization = (size - available) / size * 100 if size else 0.0

        health = {
            "healthy": utilization < SATURATION_PERCENT,
            "round_trip_ms": round(round_trip_ms, 2),
            "pool_stats": {
                "pool_size": size,
                "pool_available": available,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }
        if not health["healthy"]:
            health["error"] = "Connection pool saturated"
        return health


db_pool = DatabasePoolManager()


async def get_db_connection():
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
