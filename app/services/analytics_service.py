"""
On-demand analytics over stored feedback results.

The SQL side does the grouping; build_summary() is a pure function that
turns grouped rows into an AnalyticsSummary, so the empty state and the
growth convention are testable without a database.
"""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.observability.metrics import SENTIMENT_LABELS
from app.models.domain.analytics_domain import (
    AnalyticsScope,
    AnalyticsSummary,
    GrowthSummary,
    IntentAggregateRow,
    SentimentAggregateRow,
    SentimentBreakdown,
)
from app.repositories.result_repository import ResultRepository, result_repository

logger = get_logger(__name__)


def compute_growth(this_week: int, last_week: int) -> float:
    """
    Percentage change of the current window vs the previous one.

    100 when the previous window is empty and the current is not,
    0 when both are empty.
    """
    if last_week == 0:
        return 100.0 if this_week > 0 else 0.0
    return round((this_week - last_week) / last_week * 100, 1)


def _percentage(count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(count / total * 100, 1)


def top_intents(rows: Iterable[IntentAggregateRow], k: int) -> list[tuple[str, int]]:
    """Top-k by count; ties by first seen, then label."""
    far_future = datetime.max.replace(tzinfo=UTC)

    def first_seen(row: IntentAggregateRow) -> datetime:
        if row.first_seen is None:
            return far_future
        if row.first_seen.tzinfo is None:
            return row.first_seen.replace(tzinfo=UTC)
        return row.first_seen

    ordered = sorted(rows, key=lambda r: (-r.count, first_seen(r), r.intent))
    return [(r.intent, r.count) for r in ordered[: max(k, 0)]]


def build_summary(
    sentiment_rows: Iterable[SentimentAggregateRow],
    intent_rows: Iterable[IntentAggregateRow],
    *,
    top_k: int = 5,
    scope_label: str = "user",
    now: datetime | None = None,
) -> AnalyticsSummary:
    by_sentiment = {label: SentimentAggregateRow(label, 0, 0.0, 0, 0) for label in SENTIMENT_LABELS}
    for row in sentiment_rows:
        # Only the three classified labels are reported
        if row.sentiment in by_sentiment:
            by_sentiment[row.sentiment] = row

    total = sum(row.count for row in by_sentiment.values())
    this_week = sum(row.this_week for row in by_sentiment.values())
    last_week = sum(row.last_week for row in by_sentiment.values())

    breakdown = {
        label: SentimentBreakdown(
            count=row.count,
            percentage=_percentage(row.count, total),
            avg_confidence=round(row.avg_confidence, 4) if row.count else 0.0,
            growth=compute_growth(row.this_week, row.last_week),
        )
        for label, row in by_sentiment.items()
    }

    weighted = sum(row.avg_confidence * row.count for row in by_sentiment.values())
    avg_confidence = round(weighted / total, 4) if total else 0.0

    return AnalyticsSummary(
        total=total,
        breakdown=breakdown,
        avg_confidence=avg_confidence,
        top_intents=top_intents(intent_rows, top_k),
        growth=GrowthSummary(
            total=compute_growth(this_week, last_week),
            this_week=this_week,
            last_week=last_week,
        ),
        scope=scope_label,
        generated_at=now or datetime.now(UTC),
    )


class AnalyticsService:
    def __init__(
        self,
        results: ResultRepository | None = None,
        top_k: int | None = None,
        window_days: int | None = None,
    ):
        self.results = results or result_repository
        self.top_k = top_k or settings.ANALYTICS_TOP_INTENTS
        self.window_days = window_days or settings.ANALYTICS_GROWTH_WINDOW_DAYS

    async def summarize(
        self, scope: AnalyticsScope, now: datetime | None = None
    ) -> AnalyticsSummary:
        """Summary for one user or (user_id=None) the whole system."""
        now = now or datetime.now(UTC)
        window = timedelta(days=self.window_days)
        current_start = now - window
        previous_start = current_start - window

        sentiment_rows = await self.results.sentiment_aggregates(
            scope, current_start, previous_start
        )
        intent_rows = await self.results.intent_aggregates(scope)

        summary = build_summary(
            sentiment_rows,
            intent_rows,
            top_k=self.top_k,
            scope_label="system" if scope.system_wide else "user",
            now=now,
        )
        logger.debug(
            "Analytics summary computed",
            scope=summary.scope,
            user_id=scope.user_id,
            total=summary.total,
        )
        return summary
