"""
feedback.py
-----------
Purpose:
    Feedback submission, polling and per-user analytics.

Usage:
    1. POST /feedback/submit - Queue text for classification (202, returns job_id)
    2. GET /feedback/result/{job_id} - Poll job status / result
    3. GET /feedback/stats - Caller-scoped analytics summary
    4. GET /feedback/history - Caller's stored results, paginated
    5. DELETE /feedback/clear - Delete the caller's stored results
"""

import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import auth_dependency
from app.db.helpers import DatabaseError
from app.dependencies import get_analytics_service, get_feedback_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.feedback_request import SubmitFeedbackRequest
from app.models.api.feedback_response import (
    FeedbackHistoryResponse,
    FeedbackResultResponse,
    JobStatusResponse,
    PaginationResponse,
    SubmitFeedbackResponse,
)
from app.models.domain.analytics_domain import AnalyticsScope
from app.models.domain.feedback_domain import (
    FeedbackResult,
    JobCompleted,
    JobFailed,
    JobStatus,
)
from app.services.analytics_service import AnalyticsService
from app.services.feedback_service import (
    FeedbackService,
    FeedbackValidationError,
    JobNotFoundError,
)
from app.services.queue_service import QueueUnavailableError

router = APIRouter(prefix="/feedback", tags=["feedback"])
logger = get_logger(__name__)

RETRY_AFTER_SECONDS = "5"


def require_user_id(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )
    return str(user_id)


def service_unavailable(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=detail,
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


def to_result_response(result: FeedbackResult) -> FeedbackResultResponse:
    return FeedbackResultResponse(**result.to_dict())


def to_status_response(job_status: JobStatus) -> JobStatusResponse:
    if isinstance(job_status, JobCompleted):
        return JobStatusResponse(
            job_id=job_status.job_id,
            status="completed",
            result=to_result_response(job_status.result),
        )
    if isinstance(job_status, JobFailed):
        return JobStatusResponse(
            job_id=job_status.job_id,
            status="failed",
            result=to_result_response(job_status.result) if job_status.result else None,
            error=job_status.reason,
        )
    return JobStatusResponse(
        job_id=job_status.job_id,
        status=job_status.status,
        attempts=job_status.attempts,
    )


def pagination(page: int, limit: int, total: int) -> PaginationResponse:
    return PaginationResponse(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if limit else 0,
    )


@router.post(
    "/submit",
    response_model=SubmitFeedbackResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_feedback(
    request: SubmitFeedbackRequest,
    claims: dict = Depends(auth_dependency),
    feedback: FeedbackService = Depends(get_feedback_service),
):
    """
    Queue feedback for asynchronous classification.

    Raises:
        400: Empty or oversized text
        503: Queue unavailable (retry later)
    """
    user_id = require_user_id(claims)
    try:
        job_id = await feedback.submit(user_id, request.text, request.metadata)
    except FeedbackValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except QueueUnavailableError as e:
        raise service_unavailable(str(e)) from e

    return SubmitFeedbackResponse(success=True, job_id=job_id, status="queued")


@router.get("/result/{job_id}", response_model=JobStatusResponse)
async def get_result(
    job_id: str,
    claims: dict = Depends(auth_dependency),
    feedback: FeedbackService = Depends(get_feedback_service),
):
    user_id = require_user_id(claims)
    try:
        job_status = await feedback.get_status(job_id, user_id=user_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DatabaseError as e:
        raise service_unavailable("Result store unavailable") from e

    return to_status_response(job_status)


@router.get("/stats")
async def get_stats(
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    claims: dict = Depends(auth_dependency),
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Analytics summary over the caller's completed feedback."""
    user_id = require_user_id(claims)
    try:
        summary = await analytics.summarize(
            AnalyticsScope(user_id=user_id, since=since, until=until)
        )
    except DatabaseError as e:
        raise service_unavailable("Analytics temporarily unavailable") from e

    return {"success": True, "stats": summary.to_dict()}


@router.get("/history", response_model=FeedbackHistoryResponse)
async def get_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sentiment: str | None = Query(default=None),
    claims: dict = Depends(auth_dependency),
    feedback: FeedbackService = Depends(get_feedback_service),
):
    user_id = require_user_id(claims)
    try:
        results, total = await feedback.history(user_id, page=page, limit=limit, sentiment=sentiment)
    except DatabaseError as e:
        raise service_unavailable("Result store unavailable") from e

    return FeedbackHistoryResponse(
        success=True,
        feedback=[to_result_response(r) for r in results],
        pagination=pagination(page, limit, total),
    )


@router.delete("/clear")
async def clear_history(
    claims: dict = Depends(auth_dependency),
    feedback: FeedbackService = Depends(get_feedback_service),
):
    user_id = require_user_id(claims)
    try:
        deleted = await feedback.clear_history(user_id)
    except DatabaseError as e:
        raise service_unavailable("Result store unavailable") from e

    return {"success": True, "deleted": deleted}
