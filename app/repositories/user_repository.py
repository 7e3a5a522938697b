"""
User store access for the fields this service owns: presence
(last_active, is_online) and the embedded platform rating.
"""

from datetime import datetime
from typing import Any

from app.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.user_domain import PlatformRating, RatingStats, UserCounts, UserSummary

logger = get_logger(__name__)


def _row_to_rating(row: dict[str, Any]) -> PlatformRating | None:
    if row.get("rating_score") is None:
        return None
    return PlatformRating(
        score=int(row["rating_score"]),
        message=row.get("rating_message") or "",
        created_at=row["rating_created_at"],
        updated_at=row["rating_updated_at"],
    )


class UserRepository:
    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=2, base_delay=0.05)
    async def touch_presence(self, user_id: str, now: datetime) -> bool:
        """Single-row write: last_active = now, is_online = true."""
        affected = await execute_query(
            "UPDATE users SET last_active = %s, is_online = TRUE WHERE id = %s",
            (now, user_id),
        )
        return affected > 0

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def mark_stale_offline(self, cutoff: datetime) -> int:
        """
        Batched demotion. The predicate is re-checked per row at write time,
        so a heartbeat that lands first keeps the user online.
        """
        return await execute_query(
            "UPDATE users SET is_online = FALSE WHERE is_online AND last_active < %s",
            (cutoff,),
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def counts(self) -> UserCounts:
        row = await fetch_one(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE is_account_verified) AS verified,
                COUNT(*) FILTER (WHERE is_online) AS online,
                COUNT(*) FILTER (WHERE COALESCE(role, 'member') = 'admin') AS admins,
                COUNT(*) FILTER (WHERE COALESCE(role, 'member') = 'manager') AS managers,
                COUNT(*) FILTER (WHERE COALESCE(role, 'member') = 'member') AS members
            FROM users
            """
        )
        row = row or {}
        total = int(row.get("total") or 0)
        verified = int(row.get("verified") or 0)
        return UserCounts(
            total=total,
            verified=verified,
            unverified=total - verified,
            online=int(row.get("online") or 0),
            by_role={
                "admin": int(row.get("admins") or 0),
                "manager": int(row.get("managers") or 0),
                "member": int(row.get("members") or 0),
            },
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def recent_users(self, limit: int = 10) -> list[UserSummary]:
        rows = await fetch_all(
            """
            SELECT id, name, email, COALESCE(role, 'member') AS role, is_account_verified,
                   is_online, last_active, created_at
            FROM users
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (limit,),
        )
        return [
            UserSummary(
                user_id=str(r["id"]),
                name=r["name"],
                email=r["email"],
                role=r["role"],
                is_account_verified=bool(r["is_account_verified"]),
                is_online=bool(r["is_online"]),
                last_active=r["last_active"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Rating sub-document
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=2, base_delay=0.05)
    async def upsert_rating(
        self, user_id: str, score: int, message: str, now: datetime
    ) -> tuple[PlatformRating | None, bool]:
        """
        Write the rating sub-document. Returns (rating, created) where created
        is True when the user had no rating before.
        """
        row = await fetch_one(
            """
            UPDATE users u SET
                rating_score = %s,
                rating_message = %s,
                rating_created_at = COALESCE(u.rating_created_at, %s),
                rating_updated_at = %s
            FROM (SELECT id, rating_score AS previous_score FROM users WHERE id = %s) prev
            WHERE u.id = prev.id
            RETURNING u.rating_score, u.rating_message, u.rating_created_at,
                      u.rating_updated_at, prev.previous_score
            """,
            (score, message, now, now, user_id),
        )
        if not row:
            return None, False
        return _row_to_rating(row), row["previous_score"] is None

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_rating(self, user_id: str) -> tuple[bool, PlatformRating | None]:
        """Returns (user_exists, rating)."""
        row = await fetch_one(
            """
            SELECT rating_score, rating_message, rating_created_at, rating_updated_at
            FROM users WHERE id = %s
            """,
            (user_id,),
        )
        if not row:
            return False, None
        return True, _row_to_rating(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def rating_distribution(self) -> dict[int, int]:
        rows = await fetch_all(
            """
            SELECT rating_score AS score, COUNT(*) AS count
            FROM users
            WHERE rating_score IS NOT NULL
            GROUP BY rating_score
            """
        )
        return {int(r["score"]): int(r["count"]) for r in rows}

    async def rating_stats(self) -> RatingStats:
        distribution = await self.rating_distribution()
        return build_rating_stats(distribution)


def build_rating_stats(distribution: dict[int, int]) -> RatingStats:
    """Average and per-score counts; scores outside 1-5 are ignored."""
    counts = {str(score): 0 for score in range(1, 6)}
    total = 0
    weighted = 0
    for score, count in distribution.items():
        if 1 <= score <= 5:
            counts[str(score)] = count
            total += count
            weighted += score * count
    average = round(weighted / total, 2) if total else 0.0
    return RatingStats(average_rating=average, total_ratings=total, distribution=counts)


user_repository = UserRepository()
