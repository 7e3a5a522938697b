"""
Durable feedback job queue on Redis lists.

    feedback:jobs                        pending jobs (LPUSH in, BRPOPLPUSH out)
    feedback:jobs:inflight:<worker_id>   reserved by one worker, not yet acked
    feedback:workers                     worker leases (ZSET scored by expiry)
    feedback:jobs:delayed                retries waiting for their backoff (ZSET by ready-at)

Delivery is at-least-once: a reserved job stays in its worker's in-flight
list until acked. Live workers renew their lease; the in-flight list of a
worker whose lease expired is requeued by whichever peer claims it first.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.feedback_domain import FeedbackJob
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


class QueueUnavailableError(Exception):
    """The broker could not accept the job. Callers may retry."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass(slots=True)
class ReservedJob:
    """A job popped into the in-flight list; payload is the exact list value for acking."""

    payload: str
    job: FeedbackJob | None
    decode_error: str | None = None


class FeedbackQueue:
    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        queue_key: str | None = None,
        inflight_key: str | None = None,
        delayed_key: str | None = None,
        workers_key: str | None = None,
        worker_id: str | None = None,
        lease_s: float | None = None,
    ):
        self.redis = redis_client or fast_redis
        self.queue_key = queue_key or settings.FEEDBACK_QUEUE_KEY
        self.inflight_prefix = inflight_key or settings.FEEDBACK_INFLIGHT_KEY
        self.delayed_key = delayed_key or settings.FEEDBACK_DELAYED_KEY
        self.workers_key = workers_key or settings.FEEDBACK_WORKERS_KEY
        self.worker_id = worker_id or uuid.uuid4().hex[:12]
        self.lease_s = lease_s or settings.WORKER_LEASE_SECONDS
        self.inflight_key = self.inflight_key_for(self.worker_id)

    def inflight_key_for(self, worker_id: str) -> str:
        return f"{self.inflight_prefix}:{worker_id}"

    async def enqueue(
        self,
        job: FeedbackJob,
        *,
        retries: int | None = None,
        base_delay: float | None = None,
    ) -> None:
        """
        Push a job, retrying briefly with exponential backoff.

        Raises:
            QueueUnavailableError: broker still unavailable after all retries
        """
        retries = settings.SUBMIT_ENQUEUE_RETRIES if retries is None else retries
        base_delay = settings.SUBMIT_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
        payload = job.to_payload()

        for attempt in range(retries + 1):
            if await self.redis.push_to_list(self.queue_key, payload):
                logger.debug("Feedback job enqueued", job_id=job.job_id, attempt=attempt + 1)
                return
            if attempt < retries:
                delay = base_delay * (2**attempt)
                logger.warning(
                    "Enqueue failed, retrying",
                    job_id=job.job_id,
                    attempt=attempt + 1,
                    delay=delay,
                )
                await asyncio.sleep(delay)

        logger.error("Enqueue failed after all retries", job_id=job.job_id, attempts=retries + 1)
        raise QueueUnavailableError("Feedback queue is unavailable, please retry")

    async def reserve(self, timeout: int | None = None) -> ReservedJob | None:
        timeout = settings.WORKER_POLL_TIMEOUT_SECONDS if timeout is None else timeout
        payload = await self.redis.pop_to_inflight(self.queue_key, self.inflight_key, timeout)
        if payload is None:
            return None
        try:
            return ReservedJob(payload=payload, job=FeedbackJob.from_payload(payload))
        except (ValueError, KeyError, TypeError) as e:
            return ReservedJob(payload=payload, job=None, decode_error=str(e))

    async def ack(self, reserved: ReservedJob) -> bool:
        acked = await self.redis.ack_from_inflight(self.inflight_key, reserved.payload)
        if not acked:
            logger.warning(
                "Ack found nothing in flight",
                job_id=reserved.job.job_id if reserved.job else None,
            )
        return acked

    async def schedule_retry(self, job: FeedbackJob, delay_s: float) -> bool:
        """Park the next attempt in the delayed set; the worker promotes it when due."""
        return await self.redis.add_delayed(self.delayed_key, job.to_payload(), time.time() + delay_s)

    async def promote_due(self, now: float | None = None) -> int:
        return await self.redis.promote_due(
            self.delayed_key, self.queue_key, time.time() if now is None else now
        )

    async def renew_lease(self, now: float | None = None) -> bool:
        """Mark this worker alive until now + lease_s."""
        now = time.time() if now is None else now
        return await self.redis.sorted_set_add(self.workers_key, self.worker_id, now + self.lease_s)

    async def recover_inflight(self, now: float | None = None) -> int:
        """
        Requeue the in-flight jobs of workers whose lease has expired.

        Jobs held by live workers are never touched. Removing the expired
        lease is the claim: only the caller whose ZREM succeeds requeues,
        so concurrent recoverers never duplicate a dead worker's jobs.
        """
        now = time.time() if now is None else now
        recovered = 0
        for worker_id in await self.redis.sorted_set_range(self.workers_key, max_score=now):
            if worker_id == self.worker_id:
                continue
            if not await self.redis.sorted_set_remove(self.workers_key, worker_id):
                continue
            inflight_key = self.inflight_key_for(worker_id)
            for payload in await self.redis.list_range(inflight_key):
                if await self.redis.requeue_from_inflight(inflight_key, self.queue_key, payload):
                    recovered += 1
            logger.warning("Reclaimed jobs of expired worker", worker_id=worker_id)
        if recovered:
            logger.warning("Recovered in-flight feedback jobs", count=recovered)
        return recovered

    async def depth(self) -> dict[str, int | None]:
        """Pending jobs, and jobs in flight across every registered worker."""
        queued = await self.redis.list_length(self.queue_key)
        if queued is None:
            return {"queued": None, "inflight": None}

        workers = set(await self.redis.sorted_set_range(self.workers_key)) | {self.worker_id}
        inflight = 0
        for worker_id in workers:
            inflight += await self.redis.list_length(self.inflight_key_for(worker_id)) or 0
        return {"queued": queued, "inflight": inflight}
