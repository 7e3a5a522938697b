"""
Feedback submission and polling.

submit() only validates, records a 'queued' status, and enqueues; it never
classifies and never waits on a worker.
"""

from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.observability.metrics import FeedbackMetrics
from app.models.domain.feedback_domain import (
    FeedbackJob,
    FeedbackResult,
    JobCompleted,
    JobFailed,
    JobProcessing,
    JobQueued,
    JobStatus,
    ResultStatus,
    new_job_id,
)
from app.repositories.job_status_repository import (
    STATUS_PROCESSING,
    STATUS_QUEUED,
    JobStatusRepository,
)
from app.repositories.result_repository import ResultRepository
from app.services.queue_service import FeedbackQueue, QueueUnavailableError

logger = get_logger(__name__)


class FeedbackValidationError(Exception):
    """Submitted feedback is not acceptable."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class JobNotFoundError(Exception):
    """No queued, processing, or stored job with this id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class FeedbackService:
    def __init__(
        self,
        queue: FeedbackQueue,
        results: ResultRepository,
        statuses: JobStatusRepository,
        metrics: FeedbackMetrics,
        max_length: int | None = None,
    ):
        self.queue = queue
        self.results = results
        self.statuses = statuses
        self.metrics = metrics
        self.max_length = max_length or settings.MAX_FEEDBACK_LENGTH

    def _validate(self, text: str) -> str:
        cleaned = (text or "").strip()
        if not cleaned:
            raise FeedbackValidationError("Feedback text is required")
        if len(cleaned) > self.max_length:
            raise FeedbackValidationError(
                f"Feedback text exceeds {self.max_length} characters"
            )
        return cleaned

    async def submit(
        self, user_id: str, text: str, metadata: dict[str, Any] | None = None
    ) -> str:
        """
        Accept feedback for asynchronous classification.

        Returns:
            The new job id.

        Raises:
            FeedbackValidationError: empty or oversized text
            QueueUnavailableError: the broker did not accept the job
        """
        job = FeedbackJob(
            job_id=new_job_id(),
            user_id=user_id,
            text=self._validate(text),
            metadata=dict(metadata or {}),
        )

        if not await self.statuses.set_status(job.job_id, STATUS_QUEUED, user_id=user_id):
            raise QueueUnavailableError("Job status store is unavailable, please retry")

        try:
            await self.queue.enqueue(job)
        except QueueUnavailableError:
            await self.statuses.clear(job.job_id)
            raise

        self.metrics.record_submission()
        logger.info(
            "Feedback submitted",
            job_id=job.job_id,
            user_id=user_id,
            text_length=len(job.text),
        )
        return job.job_id

    async def get_status(self, job_id: str, user_id: str | None = None) -> JobStatus:
        """
        Resolve the polling status of a job.

        Terminal states come from the result store; queued/processing from
        the Redis status record. user_id restricts lookups to the owner.

        Raises:
            JobNotFoundError: unknown id (or owned by someone else)
        """
        result = await self.results.get(job_id)
        if result is not None:
            if user_id is not None and result.user_id != user_id:
                raise JobNotFoundError(job_id)
            if result.status == ResultStatus.FAILED:
                return JobFailed(job_id=job_id, reason=result.error or "failed", result=result)
            return JobCompleted(job_id=job_id, result=result)

        record = await self.statuses.get_status(job_id)
        if record is None or (user_id is not None and record.get("user_id") != user_id):
            raise JobNotFoundError(job_id)

        attempts = int(record.get("attempts") or 0)
        if record.get("status") == STATUS_PROCESSING:
            return JobProcessing(job_id=job_id, attempts=attempts)
        return JobQueued(job_id=job_id, attempts=attempts)

    async def history(
        self, user_id: str | None, page: int = 1, limit: int = 10, sentiment: str | None = None
    ) -> tuple[list[FeedbackResult], int]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        return await self.results.list_results(
            user_id=user_id, sentiment=sentiment, limit=limit, offset=(page - 1) * limit
        )

    async def clear_history(self, user_id: str) -> int:
        deleted = await self.results.delete_for_user(user_id)
        logger.info("Feedback history cleared", user_id=user_id, deleted=deleted)
        return deleted
