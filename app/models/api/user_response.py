# app/models/api/user_response.py
from datetime import datetime

from pydantic import BaseModel

from app.models.domain.user_domain import PlatformRating, RatingStats, UserCounts


class HeartbeatResponse(BaseModel):
    """Response for POST /user/heartbeat"""

    success: bool
    last_active: datetime


class RatingResponse(BaseModel):
    """Response for GET/POST /user/rating"""

    success: bool
    rating: PlatformRating | None = None


class UserRatingsAdminResponse(BaseModel):
    """Response for GET /admin/user-ratings"""

    success: bool
    stats: RatingStats


class AdminUsersBlock(UserCounts):
    """User counts section of GET /admin/stats"""

    recent: list[dict] = []
