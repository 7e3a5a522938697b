from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PlatformRating(BaseModel):
    """Rating sub-document embedded on the user record."""

    score: int = Field(..., ge=1, le=5)
    message: str = Field(default="", max_length=1000)
    created_at: datetime
    updated_at: datetime


class UserPresence(BaseModel):
    """Presence fields embedded on the user record."""

    user_id: str
    last_active: datetime | None = None
    is_online: bool = False


class UserCounts(BaseModel):
    """Aggregate user counts for dashboards and metrics."""

    total: int = 0
    verified: int = 0
    unverified: int = 0
    online: int = 0
    by_role: dict[str, int] = Field(
        default_factory=lambda: {"admin": 0, "manager": 0, "member": 0}
    )


class UserSummary(BaseModel):
    """Subset of a user row surfaced on admin dashboards."""

    model_config = ConfigDict(extra="allow")

    user_id: str
    name: str | None = None
    email: str | None = None
    role: Literal["admin", "manager", "member"] = "member"
    is_account_verified: bool = False
    is_online: bool = False
    last_active: datetime | None = None
    created_at: datetime | None = None
    rating: PlatformRating | None = None


class RatingStats(BaseModel):
    average_rating: float = 0.0
    total_ratings: int = 0
    distribution: dict[str, int] = Field(
        default_factory=lambda: {str(score): 0 for score in range(1, 6)}
    )
