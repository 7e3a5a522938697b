"""
admin.py
--------
Purpose:
    System-wide dashboards. Every endpoint requires role == "admin".

Usage:
    1. GET /admin/stats - System analytics + user counts (presence swept first)
    2. GET /admin/feedback - All stored results, filterable, with intent counts
    3. GET /admin/user-ratings - Platform rating average and distribution
"""

from collections import Counter

from fastapi import APIRouter, Depends, Query

from app.auth.verify import admin_dependency
from app.db.helpers import DatabaseError
from app.dependencies import (
    get_analytics_service,
    get_feedback_service,
    get_presence_service,
    get_rating_service,
    get_user_repository,
)
from app.infrastructure.observability.logging import get_logger
from app.models.api.feedback_response import AdminFeedbackResponse
from app.models.api.user_response import AdminUsersBlock, UserRatingsAdminResponse
from app.models.domain.analytics_domain import AnalyticsScope
from app.repositories.user_repository import UserRepository
from app.routes.feedback import pagination, service_unavailable, to_result_response
from app.services.analytics_service import AnalyticsService
from app.services.feedback_service import FeedbackService
from app.services.presence_service import PresenceService
from app.services.rating_service import RatingService

router = APIRouter(prefix="/admin", tags=["admin"])
logger = get_logger(__name__)

RECENT_USERS_LIMIT = 10


@router.get("/stats")
async def admin_stats(
    claims: dict = Depends(admin_dependency),
    analytics: AnalyticsService = Depends(get_analytics_service),
    presence: PresenceService = Depends(get_presence_service),
    users: UserRepository = Depends(get_user_repository),
    feedback: FeedbackService = Depends(get_feedback_service),
):
    """
    System-wide summary. Runs a presence sweep before counting online users
    so the figure never includes users past the staleness threshold.
    """
    try:
        await presence.sweep()
        summary = await analytics.summarize(AnalyticsScope())
        counts = await users.counts()
        recent = await users.recent_users(RECENT_USERS_LIMIT)
    except DatabaseError as e:
        raise service_unavailable("Analytics temporarily unavailable") from e

    users_block = AdminUsersBlock(
        **counts.model_dump(),
        recent=[u.model_dump(mode="json") for u in recent],
    )
    logger.info("Admin stats retrieved", admin_id=claims.get("sub"), total=summary.total)

    return {
        "success": True,
        "stats": summary.to_dict(),
        "users": users_block.model_dump(),
        "queue": await feedback.queue.depth(),
    }


@router.get("/feedback", response_model=AdminFeedbackResponse)
async def admin_feedback(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sentiment: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    claims: dict = Depends(admin_dependency),
    feedback: FeedbackService = Depends(get_feedback_service),
):
    try:
        results, total = await feedback.history(user_id, page=page, limit=limit, sentiment=sentiment)
    except DatabaseError as e:
        raise service_unavailable("Result store unavailable") from e

    intent_stats = Counter(intent for r in results for intent in r.intents)
    return AdminFeedbackResponse(
        success=True,
        feedback=[to_result_response(r) for r in results],
        pagination=pagination(page, limit, total),
        intent_stats=dict(intent_stats.most_common()),
    )


@router.get("/user-ratings", response_model=UserRatingsAdminResponse)
async def admin_user_ratings(
    claims: dict = Depends(admin_dependency),
    ratings: RatingService = Depends(get_rating_service),
):
    try:
        stats = await ratings.stats()
    except DatabaseError as e:
        raise service_unavailable("User store unavailable") from e

    return UserRatingsAdminResponse(success=True, stats=stats)
