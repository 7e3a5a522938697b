"""
Feedback classification worker.

Runs WORKER_CONCURRENCY consumer tasks draining the shared Redis queue plus
one housekeeping task (promote delayed retries, renew this worker's lease,
reclaim jobs of workers whose lease expired). Every job is handled inside its own
try/except so one bad job never stops a consumer.

Per-job flow:
    reserve -> (already has a result? ack, done)
            -> status=processing -> classify (bounded by a timeout)
            -> upsert result -> count sentiment once -> ack
    on failure: schedule retry with backoff (status=queued), or write a
    terminal failed result once attempts are exhausted.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime

from prometheus_client import start_http_server

from app.config import settings
from app.db.helpers import DatabaseError
from app.db.pool import db_pool
from app.db.schema import ensure_schema
from app.infrastructure.observability.logging import get_logger, set_process_role
from app.infrastructure.observability.metrics import FeedbackMetrics
from app.models.domain.feedback_domain import FeedbackResult
from app.repositories.job_status_repository import (
    STATUS_PROCESSING,
    STATUS_QUEUED,
    JobStatusRepository,
)
from app.repositories.result_repository import ResultRepository
from app.services.classifier import (
    ClassificationError,
    Classifier,
    build_feedback_classifier,
)
from app.services.queue_service import FeedbackQueue, ReservedJob
from app.services.redis_client import fast_redis

logger = get_logger(__name__)

HOUSEKEEPING_INTERVAL_SECONDS = 1.0
ERROR_BACKOFF_SECONDS = 1.0


@dataclass
class WorkerStats:
    """Process-local counters for logs and health output."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed: int = 0
    duplicates: int = 0
    retried: int = 0
    failed: int = 0
    dropped: int = 0

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "completed": self.completed,
            "duplicates": self.duplicates,
            "retried": self.retried,
            "failed": self.failed,
            "dropped": self.dropped,
        }


class FeedbackWorker:
    def __init__(
        self,
        queue: FeedbackQueue,
        results: ResultRepository,
        statuses: JobStatusRepository,
        classifier: Classifier,
        metrics: FeedbackMetrics,
        *,
        concurrency: int | None = None,
        max_attempts: int | None = None,
        retry_base_delay: float | None = None,
        classification_timeout: float | None = None,
        poll_timeout: int | None = None,
    ):
        config = settings.get_worker_config()
        self.queue = queue
        self.results = results
        self.statuses = statuses
        self.classifier = classifier
        self.metrics = metrics
        self.concurrency = concurrency or config["concurrency"]
        self.max_attempts = max_attempts or config["max_attempts"]
        self.retry_base_delay = (
            config["retry_base_delay"] if retry_base_delay is None else retry_base_delay
        )
        self.classification_timeout = classification_timeout or config["classification_timeout"]
        self.poll_timeout = config["poll_timeout"] if poll_timeout is None else poll_timeout
        self.stats = WorkerStats()
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    def retry_delay(self, attempts: int) -> float:
        """Exponential backoff for the attempt that just failed (0-based)."""
        return self.retry_base_delay * (2**attempts)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Take a lease, reclaim jobs of dead workers, then run consumers and housekeeping."""
        await self.queue.renew_lease()
        await self.queue.recover_inflight()
        logger.info(
            "Feedback worker started",
            worker_id=self.queue.worker_id,
            concurrency=self.concurrency,
            max_attempts=self.max_attempts,
            classification_timeout=self.classification_timeout,
        )

        tasks = [
            asyncio.create_task(self._consume(index), name=f"feedback-consumer-{index}")
            for index in range(self.concurrency)
        ]
        tasks.append(asyncio.create_task(self._housekeeping(), name="feedback-housekeeping"))

        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Feedback worker stopped", **self.stats.to_dict())

    async def _consume(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                reserved = await self.queue.reserve(self.poll_timeout)
                if reserved is None:
                    if self.poll_timeout == 0:
                        await asyncio.sleep(ERROR_BACKOFF_SECONDS)
                    continue
                await self.process(reserved)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Consumer loop error",
                    consumer=index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    async def _housekeeping(self) -> None:
        while not self._stopping.is_set():
            try:
                if not await self.queue.renew_lease():
                    logger.warning("Could not renew worker lease", worker_id=self.queue.worker_id)
                moved = await self.queue.promote_due()
                if moved:
                    logger.debug("Promoted delayed feedback jobs", count=moved)
                await self.queue.recover_inflight()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Worker housekeeping error", error=str(e))
            await asyncio.sleep(HOUSEKEEPING_INTERVAL_SECONDS)

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    async def process(self, reserved: ReservedJob) -> str:
        """
        Handle one reserved job. Never raises for job-level problems.

        Returns one of: completed, duplicate, retried, failed, dropped, deferred.
        """
        if reserved.job is None:
            logger.error(
                "Dropping malformed feedback job",
                payload_preview=reserved.payload[:80],
                error=reserved.decode_error,
            )
            await self.queue.ack(reserved)
            self.stats.dropped += 1
            return "dropped"

        job = reserved.job
        try:
            if await self.results.exists(job.job_id):
                # Redelivery of a finished job: no new row, no second count
                await self.queue.ack(reserved)
                self.stats.duplicates += 1
                logger.info("Skipping already processed job", job_id=job.job_id)
                return "duplicate"
        except DatabaseError as e:
            return await self._handle_failure(reserved, f"Result store unavailable: {e}")

        await self.statuses.set_status(
            job.job_id, STATUS_PROCESSING, user_id=job.user_id, attempts=job.attempts
        )

        try:
            output = await asyncio.wait_for(
                self.classifier.classify(job.text), timeout=self.classification_timeout
            )
        except TimeoutError:
            return await self._handle_failure(
                reserved, f"Classification timed out after {self.classification_timeout}s"
            )
        except ClassificationError as e:
            if not e.recoverable:
                return await self._fail_terminal(reserved, str(e))
            return await self._handle_failure(reserved, str(e))
        except Exception as e:
            return await self._handle_failure(reserved, f"{type(e).__name__}: {e}")

        result = FeedbackResult.completed(job, output)
        try:
            inserted = await self.results.upsert(result)
        except DatabaseError as e:
            return await self._handle_failure(reserved, f"Result store write failed: {e}")

        if inserted:
            self.metrics.record_classification(result.sentiment.value)
        await self.queue.ack(reserved)
        await self.statuses.clear(job.job_id)

        self.stats.completed += 1
        logger.info(
            "Feedback classified",
            job_id=job.job_id,
            sentiment=result.sentiment.value,
            confidence=result.confidence,
            ai_processed=result.ai_processed,
            attempts=job.attempts + 1,
        )
        return "completed"

    async def _handle_failure(self, reserved: ReservedJob, reason: str) -> str:
        job = reserved.job
        if job.attempts + 1 >= self.max_attempts:
            return await self._fail_terminal(reserved, reason)

        delay = self.retry_delay(job.attempts)
        retry = job.next_attempt()
        # Status first: once scheduled, a peer may promote and mark it processing
        await self.statuses.set_status(
            job.job_id, STATUS_QUEUED, user_id=job.user_id, attempts=retry.attempts, error=reason
        )
        # Schedule before acking: a crash in between duplicates the job rather than losing it
        if not await self.queue.schedule_retry(retry, delay):
            logger.error(
                "Could not schedule retry, leaving job in flight",
                job_id=job.job_id,
                reason=reason,
            )
            return "deferred"
        await self.queue.ack(reserved)

        self.stats.retried += 1
        logger.warning(
            "Feedback job failed, retry scheduled",
            job_id=job.job_id,
            attempt=job.attempts + 1,
            max_attempts=self.max_attempts,
            delay_s=delay,
            reason=reason,
        )
        return "retried"

    async def _fail_terminal(self, reserved: ReservedJob, reason: str) -> str:
        job = reserved.job
        try:
            await self.results.upsert(FeedbackResult.failed(job, reason))
        except DatabaseError as e:
            # Left in flight; a peer reclaims it once this worker's lease lapses
            logger.error(
                "Could not record terminal failure, leaving job in flight",
                job_id=job.job_id,
                error=str(e),
            )
            return "deferred"

        await self.queue.ack(reserved)
        await self.statuses.clear(job.job_id)
        self.stats.failed += 1
        logger.error(
            "Feedback job failed permanently",
            job_id=job.job_id,
            attempts=job.attempts + 1,
            reason=reason,
        )
        return "failed"


def build_feedback_worker(metrics: FeedbackMetrics) -> FeedbackWorker:
    return FeedbackWorker(
        queue=FeedbackQueue(),
        results=ResultRepository(),
        statuses=JobStatusRepository(),
        classifier=build_feedback_classifier(),
        metrics=metrics,
    )


async def start_feedback_worker() -> None:
    """
    Entry point for a classifier worker process.

    Exits with an exception (non-zero status) only when infrastructure
    cannot be initialized; job-level errors are contained.
    """
    set_process_role("feedback_worker")
    metrics = FeedbackMetrics()
    if settings.WORKER_METRICS_PORT:
        start_http_server(settings.WORKER_METRICS_PORT, registry=metrics.registry)
        logger.info("Worker metrics endpoint started", port=settings.WORKER_METRICS_PORT)

    await db_pool.initialize()
    await ensure_schema()
    await fast_redis.initialize()
    worker = build_feedback_worker(metrics)
    try:
        await worker.run()
    finally:
        await fast_redis.close()
        await db_pool.close()


if __name__ == "__main__":
    asyncio.run(start_feedback_worker())
