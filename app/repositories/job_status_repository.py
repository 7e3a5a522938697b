"""
Job status records kept in Redis.

Only the non-terminal states live here (queued, processing); completed and
failed jobs are answered from the result store. Records carry no TTL: a job
may wait in the queue for as long as the backlog lasts, and the worker
deletes the record once the job reaches a terminal state.
"""

import json
from datetime import UTC, datetime
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"


def _status_key(job_id: str) -> str:
    return f"feedback:job:{job_id}"


class JobStatusRepository:
    def __init__(self, redis_client: FastRedisClient | None = None):
        self.redis = redis_client or fast_redis

    async def set_status(
        self,
        job_id: str,
        status: str,
        *,
        user_id: str | None = None,
        attempts: int = 0,
        error: str | None = None,
    ) -> bool:
        record = {
            "job_id": job_id,
            "status": status,
            "attempts": attempts,
            "user_id": user_id,
            "error": error,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        return await self.redis.set_with_ttl(_status_key(job_id), json.dumps(record), ttl_s=None)

    async def get_status(self, job_id: str) -> dict[str, Any] | None:
        raw = await self.redis.get(_status_key(job_id))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid job status record in Redis", job_id=job_id)
            return None

    async def clear(self, job_id: str) -> bool:
        return await self.redis.delete(_status_key(job_id))
