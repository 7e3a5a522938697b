"""
User presence: heartbeats mark a user online, a periodic sweep demotes
anyone whose last heartbeat is older than the staleness threshold.

A user is online iff now - last_active <= PRESENCE_STALENESS_SECONDS.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, set_process_role
from app.repositories.user_repository import UserRepository, user_repository

logger = get_logger(__name__)


class UserNotFoundError(Exception):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class PresenceService:
    def __init__(self, users: UserRepository | None = None, staleness_s: int | None = None):
        self.users = users or user_repository
        self.staleness_s = staleness_s or settings.PRESENCE_STALENESS_SECONDS

    async def heartbeat(self, user_id: str, now: datetime | None = None) -> datetime:
        """
        Record activity for user_id.

        Raises:
            UserNotFoundError: no such user
        """
        now = now or datetime.now(UTC)
        if not await self.users.touch_presence(user_id, now):
            raise UserNotFoundError(user_id)
        return now

    async def sweep(self, now: datetime | None = None) -> int:
        """Mark stale users offline. Returns how many were demoted."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.staleness_s)
        demoted = await self.users.mark_stale_offline(cutoff)
        if demoted:
            logger.info("Presence sweep demoted users", count=demoted, cutoff=cutoff.isoformat())
        return demoted


async def run_presence_sweeper(
    presence: PresenceService, interval_s: int | None = None
) -> None:
    """Sweep forever at a fixed interval; errors are logged and the loop continues."""
    interval_s = interval_s or settings.PRESENCE_SWEEP_INTERVAL_SECONDS
    logger.info(
        "Presence sweeper STARTED",
        interval_s=interval_s,
        staleness_s=presence.staleness_s,
    )

    while True:
        try:
            await presence.sweep()
            await asyncio.sleep(interval_s)
        except asyncio.CancelledError:
            logger.info("Presence sweeper cancelled")
            break
        except Exception as e:
            logger.error(
                "Error in presence sweeper, will retry",
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(interval_s)


async def start_presence_sweeper() -> None:
    """Standalone sweeper process (``python -m app.jobs.worker presence_sweeper``)."""
    set_process_role("presence_sweeper")
    await db_pool.initialize()
    try:
        await run_presence_sweeper(PresenceService())
    finally:
        await db_pool.close()
