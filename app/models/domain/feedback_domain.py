"""
Domain models for the feedback analysis pipeline.

These lightweight dataclasses describe jobs travelling through the queue,
the results the worker persists, and the status shapes callers poll for.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    UNKNOWN = "unknown"  # terminal failures only


class ResultStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


def new_job_id() -> str:
    return uuid.uuid4().hex


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(slots=True)
class FeedbackJob:
    """Job envelope; the retry counter travels with the job, not the worker."""

    job_id: str
    user_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0

    def to_payload(self) -> str:
        return json.dumps(
            {
                "job_id": self.job_id,
                "user_id": self.user_id,
                "text": self.text,
                "metadata": self.metadata,
                "submitted_at": self.submitted_at.isoformat(),
                "attempts": self.attempts,
            },
            sort_keys=True,
        )

    @classmethod
    def from_payload(cls, payload: str) -> "FeedbackJob":
        data = json.loads(payload)
        return cls(
            job_id=str(data["job_id"]),
            user_id=str(data["user_id"]),
            text=str(data["text"]),
            metadata=data.get("metadata") or {},
            submitted_at=_parse_dt(data["submitted_at"]),
            attempts=int(data.get("attempts", 0)),
        )

    def next_attempt(self) -> "FeedbackJob":
        return FeedbackJob(
            job_id=self.job_id,
            user_id=self.user_id,
            text=self.text,
            metadata=self.metadata,
            submitted_at=self.submitted_at,
            attempts=self.attempts + 1,
        )


@dataclass(slots=True, frozen=True)
class ScoreEntry:
    label: str
    score: float


@dataclass(slots=True)
class ClassificationOutput:
    """What a classifier produces for one piece of text."""

    sentiment: Sentiment
    confidence: float
    all_scores: list[ScoreEntry]
    intents: list[str]
    ai_processed: bool


@dataclass(slots=True)
class FeedbackResult:
    """Represents a feedback_results row (one per job id)."""

    job_id: str
    user_id: str
    text: str
    status: ResultStatus
    sentiment: Sentiment
    confidence: float
    all_scores: list[ScoreEntry]
    intents: list[str]
    ai_processed: bool
    submitted_at: datetime
    processed_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def completed(
        cls, job: FeedbackJob, output: ClassificationOutput, processed_at: datetime | None = None
    ) -> "FeedbackResult":
        processed = max(processed_at or datetime.now(UTC), job.submitted_at)
        return cls(
            job_id=job.job_id,
            user_id=job.user_id,
            text=job.text,
            status=ResultStatus.COMPLETED,
            sentiment=output.sentiment,
            confidence=output.confidence,
            all_scores=list(output.all_scores),
            intents=list(output.intents),
            ai_processed=output.ai_processed,
            submitted_at=job.submitted_at,
            processed_at=processed,
            metadata=dict(job.metadata),
        )

    @classmethod
    def failed(
        cls, job: FeedbackJob, reason: str, processed_at: datetime | None = None
    ) -> "FeedbackResult":
        processed = max(processed_at or datetime.now(UTC), job.submitted_at)
        return cls(
            job_id=job.job_id,
            user_id=job.user_id,
            text=job.text,
            status=ResultStatus.FAILED,
            sentiment=Sentiment.UNKNOWN,
            confidence=0.0,
            all_scores=[],
            intents=[],
            ai_processed=False,
            submitted_at=job.submitted_at,
            processed_at=processed,
            metadata=dict(job.metadata),
            error=reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "text": self.text,
            "status": self.status.value,
            "sentiment": self.sentiment.value,
            "confidence": self.confidence,
            "confidence_percent": f"{self.confidence * 100:.1f}%",
            "all_scores": [{"label": s.label, "score": s.score} for s in self.all_scores],
            "intents": list(self.intents),
            "ai_processed": self.ai_processed,
            "submitted_at": self.submitted_at.isoformat(),
            "processed_at": self.processed_at.isoformat(),
            "metadata": self.metadata,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Polling status (tagged union)
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class JobQueued:
    job_id: str
    attempts: int = 0
    status: str = "queued"


@dataclass(slots=True, frozen=True)
class JobProcessing:
    job_id: str
    attempts: int = 0
    status: str = "processing"


@dataclass(slots=True, frozen=True)
class JobCompleted:
    job_id: str
    result: FeedbackResult
    status: str = "completed"


@dataclass(slots=True, frozen=True)
class JobFailed:
    job_id: str
    reason: str
    result: FeedbackResult | None = None
    status: str = "failed"


JobStatus = JobQueued | JobProcessing | JobCompleted | JobFailed
