"""
Materializes gauge metrics from the stores.

sync() does all of its reads first, then applies every gauge in a single
synchronous step (no awaits), so a concurrent render never observes a
half-updated snapshot. Labels missing from the latest read are reset to 0
rather than keeping their previous value.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime

from prometheus_client import start_http_server

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, set_process_role
from app.infrastructure.observability.metrics import (
    RATING_SCORES,
    SENTIMENT_LABELS,
    FeedbackMetrics,
)
from app.repositories.result_repository import ResultRepository, result_repository
from app.repositories.user_repository import (
    UserRepository,
    build_rating_stats,
    user_repository,
)
from app.services.presence_service import PresenceService

logger = get_logger(__name__)


@dataclass(slots=True)
class MetricSnapshot:
    users_total: int = 0
    users_verified: int = 0
    users_online: int = 0
    feedback_total: int = 0
    feedback_failed: int = 0
    feedback_sentiment: dict[str, int] = field(default_factory=dict)
    user_ratings_average: float = 0.0
    user_ratings: dict[str, int] = field(default_factory=dict)
    taken_at: datetime | None = None


class MetricsSynchronizer:
    def __init__(
        self,
        metrics: FeedbackMetrics,
        presence: PresenceService,
        results: ResultRepository | None = None,
        users: UserRepository | None = None,
    ):
        self.metrics = metrics
        self.presence = presence
        self.results = results or result_repository
        self.users = users or user_repository
        self.last_snapshot: MetricSnapshot | None = None
        self._lock = asyncio.Lock()

    async def collect(self) -> MetricSnapshot:
        """Sweep presence, then read every aggregate the gauges need."""
        await self.presence.sweep()

        counts = await self.users.counts()
        status_counts = await self.results.status_counts()
        distribution = await self.users.rating_distribution()

        completed = status_counts.get("completed", {})
        by_sentiment = {label: int(completed.get(label, 0)) for label in SENTIMENT_LABELS}
        rating_stats = build_rating_stats(distribution)

        return MetricSnapshot(
            users_total=counts.total,
            users_verified=counts.verified,
            users_online=counts.online,
            feedback_total=sum(by_sentiment.values()),
            feedback_failed=sum(status_counts.get("failed", {}).values()),
            feedback_sentiment=by_sentiment,
            user_ratings_average=rating_stats.average_rating,
            user_ratings=dict(rating_stats.distribution),
            taken_at=datetime.now(UTC),
        )

    def apply_snapshot(self, snapshot: MetricSnapshot) -> None:
        m = self.metrics
        m.users_total.set(snapshot.users_total)
        m.users_verified.set(snapshot.users_verified)
        m.users_online.set(snapshot.users_online)
        m.feedback_total.set(snapshot.feedback_total)
        m.feedback_failed.set(snapshot.feedback_failed)

        for label in SENTIMENT_LABELS:
            m.feedback_sentiment.labels(sentiment=label).set(0)
        for label, count in snapshot.feedback_sentiment.items():
            if label in SENTIMENT_LABELS:
                m.feedback_sentiment.labels(sentiment=label).set(count)

        m.user_ratings_average.set(snapshot.user_ratings_average)
        for score in RATING_SCORES:
            m.user_ratings_gauge.labels(score=score).set(0)
        for score, count in snapshot.user_ratings.items():
            if score in RATING_SCORES:
                m.user_ratings_gauge.labels(score=score).set(count)

        self.last_snapshot = snapshot

    async def sync(self) -> MetricSnapshot:
        snapshot = await self.collect()
        self.apply_snapshot(snapshot)
        logger.debug(
            "Metrics synchronized",
            users_total=snapshot.users_total,
            users_online=snapshot.users_online,
            feedback_total=snapshot.feedback_total,
        )
        return snapshot

    async def sync_locked(self) -> MetricSnapshot:
        async with self._lock:
            return await self.sync()

    async def scrape(self, accept: str | None = None) -> tuple[bytes, str]:
        """
        Sync, then render. A failed sync is logged and the previous gauge
        values are served.
        """
        async with self._lock:
            try:
                await self.sync()
            except Exception as e:
                logger.error(
                    "Metrics sync failed, serving last snapshot",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            return self.metrics.render(accept)


async def run_metrics_sync_loop(
    synchronizer: MetricsSynchronizer, interval_s: int | None = None
) -> None:
    interval_s = interval_s or settings.METRICS_SYNC_INTERVAL_SECONDS
    logger.info("Metrics sync loop STARTED", interval_s=interval_s)

    while True:
        try:
            await synchronizer.sync_locked()
            await asyncio.sleep(interval_s)
        except asyncio.CancelledError:
            logger.info("Metrics sync loop cancelled")
            break
        except Exception as e:
            logger.error(
                "Error in metrics sync loop, will retry",
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(interval_s)


async def start_metrics_sync_loop() -> None:
    """
    Standalone sync process (``python -m app.jobs.worker metrics_sync``).

    Serves its own registry on WORKER_METRICS_PORT when configured.
    """
    set_process_role("metrics_sync")
    metrics = FeedbackMetrics()
    if settings.WORKER_METRICS_PORT:
        start_http_server(settings.WORKER_METRICS_PORT, registry=metrics.registry)

    await db_pool.initialize()
    try:
        await run_metrics_sync_loop(MetricsSynchronizer(metrics, PresenceService()))
    finally:
        await db_pool.close()
