"""
Feedback API response models.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ScoreResponse(BaseModel):
    label: str
    score: float


class FeedbackResultResponse(BaseModel):
    """Persisted classification result."""

    job_id: str
    user_id: str
    text: str
    status: Literal["completed", "failed"]
    sentiment: Literal["positive", "neutral", "negative", "unknown"]
    confidence: float
    confidence_percent: str
    all_scores: list[ScoreResponse] = Field(default_factory=list)
    intents: list[str] = Field(default_factory=list)
    ai_processed: bool
    submitted_at: datetime
    processed_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class SubmitFeedbackResponse(BaseModel):
    """Response for POST /feedback/submit (202 Accepted)."""

    success: bool = True
    job_id: str
    status: Literal["queued"] = "queued"


class JobStatusResponse(BaseModel):
    """Response for GET /feedback/result/{job_id}."""

    job_id: str
    status: Literal["queued", "processing", "completed", "failed"]
    attempts: int | None = None
    result: FeedbackResultResponse | None = None
    error: str | None = None


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class FeedbackHistoryResponse(BaseModel):
    success: bool = True
    feedback: list[FeedbackResultResponse]
    pagination: PaginationResponse


class AdminFeedbackResponse(FeedbackHistoryResponse):
    intent_stats: dict[str, int] = Field(default_factory=dict)
