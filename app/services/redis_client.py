# app/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled Redis client used for the job queue and job status keys."""

    def __init__(self, url: str | None = None, max_connections: int = 20):
        self.url = url
        self.max_connections = max_connections
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        redis_url = self.url or settings.REDIS_URL
        try:
            logger.info("Attempting Redis connection", url_preview=redis_url.split("@")[-1][:40])

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=5,
                # Above the blocking-pop timeout so BRPOPLPUSH is not cut short
                socket_timeout=settings.WORKER_POLL_TIMEOUT_SECONDS + 5,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Fast Redis client initialized", max_connections=self.max_connections)

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except Exception as e:
            logger.error("Redis GET failed", key=key[:40], error=str(e))
            return None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        try:
            await self._ensure_initialized()
            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:40], error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.delete(key) > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:40], error=str(e))
            return False

    # ------------------------------------------------------------------
    # List queue with in-flight list (acked queue)
    # ------------------------------------------------------------------

    async def push_to_list(self, key: str, value: str, left: bool = True) -> bool:
        """Push a value onto a Redis list used as a queue."""
        try:
            await self._ensure_initialized()
            if left:
                result = await self.client.lpush(key, value)
            else:
                result = await self.client.rpush(key, value)
            return result > 0
        except Exception as e:
            logger.error(
                "Redis LIST push failed", key=key[:40], value_preview=value[:40], error=str(e)
            )
            return False

    async def pop_to_inflight(
        self, source_key: str, inflight_key: str, timeout: int = 0
    ) -> str | None:
        """
        Pop a value from a list and push to an in-flight list.

        Uses BRPOPLPUSH so a job survives a worker crash until it is acked.
        """
        try:
            await self._ensure_initialized()
            if timeout > 0:
                return await self.client.brpoplpush(source_key, inflight_key, timeout=timeout)
            return await self.client.rpoplpush(source_key, inflight_key)
        except Exception as e:
            logger.error(
                "Redis LIST inflight pop failed",
                source_key=source_key[:40],
                inflight_key=inflight_key[:40],
                error=str(e),
            )
            return None

    async def ack_from_inflight(self, inflight_key: str, value: str) -> bool:
        """Remove a processed item from the in-flight list."""
        try:
            await self._ensure_initialized()
            return await self.client.lrem(inflight_key, 1, value) > 0
        except Exception as e:
            logger.error(
                "Redis inflight ack failed",
                inflight_key=inflight_key[:40],
                value_preview=value[:40],
                error=str(e),
            )
            return False

    async def requeue_from_inflight(
        self, inflight_key: str, destination_key: str, value: str
    ) -> bool:
        """Move an item from the in-flight list back to the main queue."""
        try:
            await self._ensure_initialized()
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.lrem(inflight_key, 1, value)
                pipe.rpush(destination_key, value)
                results = await pipe.execute()
            return bool(results and results[0])
        except Exception as e:
            logger.error(
                "Redis inflight requeue failed",
                inflight_key=inflight_key[:40],
                destination_key=destination_key[:40],
                error=str(e),
            )
            return False

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        try:
            await self._ensure_initialized()
            result = await self.client.lrange(key, start, end)
            return [str(item) for item in result] if result else []
        except Exception as e:
            logger.error("Redis LRANGE failed", key=key[:40], error=str(e))
            return []

    async def list_length(self, key: str) -> int | None:
        try:
            await self._ensure_initialized()
            return int(await self.client.llen(key))
        except Exception as e:
            logger.error("Redis LLEN failed", key=key[:40], error=str(e))
            return None

    # ------------------------------------------------------------------
    # Delayed retries (sorted set scored by ready-at epoch seconds)
    # ------------------------------------------------------------------

    async def add_delayed(self, key: str, value: str, ready_at: float) -> bool:
        try:
            await self._ensure_initialized()
            await self.client.zadd(key, {value: ready_at})
            return True
        except Exception as e:
            logger.error("Redis ZADD failed", key=key[:40], error=str(e))
            return False

    async def sorted_set_add(self, key: str, member: str, score: float) -> bool:
        try:
            await self._ensure_initialized()
            await self.client.zadd(key, {member: score})
            return True
        except Exception as e:
            logger.error("Redis ZADD failed", key=key[:40], error=str(e))
            return False

    async def sorted_set_range(
        self, key: str, min_score: float = float("-inf"), max_score: float = float("inf")
    ) -> list[str]:
        """Members with min_score <= score <= max_score, lowest score first."""
        try:
            await self._ensure_initialized()
            result = await self.client.zrangebyscore(key, min_score, max_score)
            return [str(item) for item in result] if result else []
        except Exception as e:
            logger.error("Redis ZRANGEBYSCORE failed", key=key[:40], error=str(e))
            return []

    async def sorted_set_remove(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.zrem(key, member) > 0
        except Exception as e:
            logger.error("Redis ZREM failed", key=key[:40], error=str(e))
            return False

    async def promote_due(
        self, delayed_key: str, destination_key: str, now: float, limit: int = 100
    ) -> int:
        """Move due members of the delayed set onto the queue. Returns the number moved."""
        try:
            await self._ensure_initialized()
            due = await self.client.zrangebyscore(delayed_key, 0, now, start=0, num=limit)
            moved = 0
            for value in due:
                # Only the caller whose ZREM succeeds pushes, so concurrent promoters never duplicate
                if await self.client.zrem(delayed_key, value):
                    await self.client.rpush(destination_key, value)
                    moved += 1
            return moved
        except Exception as e:
            logger.error("Redis delayed promotion failed", key=delayed_key[:40], error=str(e))
            return 0


# Global instance
fast_redis = FastRedisClient()
