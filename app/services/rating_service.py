"""Platform ratings (one per user, 1-5 stars with an optional message)."""

from datetime import UTC, datetime

from app.infrastructure.observability.logging import get_logger
from app.infrastructure.observability.metrics import FeedbackMetrics
from app.models.domain.user_domain import PlatformRating, RatingStats
from app.repositories.user_repository import UserRepository, user_repository
from app.services.presence_service import UserNotFoundError

logger = get_logger(__name__)

MAX_RATING_MESSAGE_LENGTH = 1000


class RatingValidationError(Exception):
    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class RatingService:
    def __init__(self, metrics: FeedbackMetrics, users: UserRepository | None = None):
        self.metrics = metrics
        self.users = users or user_repository

    async def submit_rating(
        self, user_id: str, score: int, message: str = "", now: datetime | None = None
    ) -> PlatformRating:
        """
        Create or replace the user's rating. Every submission counts once
        toward user_ratings and user_ratings_by_score.

        Raises:
            RatingValidationError: score outside 1-5 or message too long
            UserNotFoundError: no such user
        """
        if not 1 <= score <= 5:
            raise RatingValidationError("Rating must be between 1 and 5")
        message = (message or "").strip()
        if len(message) > MAX_RATING_MESSAGE_LENGTH:
            raise RatingValidationError(
                f"Rating message exceeds {MAX_RATING_MESSAGE_LENGTH} characters"
            )

        rating, created = await self.users.upsert_rating(
            user_id, score, message, now or datetime.now(UTC)
        )
        if rating is None:
            raise UserNotFoundError(user_id)

        self.metrics.record_rating(score)
        logger.info("Platform rating saved", user_id=user_id, score=score, created=created)
        return rating

    async def get_rating(self, user_id: str) -> PlatformRating | None:
        exists, rating = await self.users.get_rating(user_id)
        if not exists:
            raise UserNotFoundError(user_id)
        return rating

    async def stats(self) -> RatingStats:
        return await self.users.rating_stats()
