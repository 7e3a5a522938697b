"""
Result store: one feedback_results row per job id.

Writes are single-row upserts keyed by job_id so redelivered jobs never
create duplicates. Reads back analytics, metrics, and polling.
"""

import json
from datetime import datetime
from typing import Any

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.analytics_domain import (
    AnalyticsScope,
    IntentAggregateRow,
    SentimentAggregateRow,
)
from app.models.domain.feedback_domain import (
    FeedbackResult,
    ResultStatus,
    ScoreEntry,
    Sentiment,
)

logger = get_logger(__name__)

_RESULT_COLUMNS = """
    job_id, user_id, text, status, sentiment, confidence, all_scores, intents,
    ai_processed, metadata, error, submitted_at, processed_at
"""


def _row_to_result(row: dict[str, Any]) -> FeedbackResult:
    scores = row.get("all_scores") or []
    return FeedbackResult(
        job_id=row["job_id"],
        user_id=row["user_id"],
        text=row["text"],
        status=ResultStatus(row["status"]),
        sentiment=Sentiment(row["sentiment"]),
        confidence=float(row["confidence"] or 0.0),
        all_scores=[ScoreEntry(label=s["label"], score=float(s["score"])) for s in scores],
        intents=list(row.get("intents") or []),
        ai_processed=bool(row["ai_processed"]),
        submitted_at=row["submitted_at"],
        processed_at=row["processed_at"],
        metadata=row.get("metadata") or {},
        error=row.get("error"),
    )


def _scope_filter(scope: AnalyticsScope, *, alias: str = "") -> tuple[str, list[Any]]:
    prefix = f"{alias}." if alias else ""
    clauses = [f"{prefix}status = 'completed'"]
    params: list[Any] = []
    if scope.user_id is not None:
        clauses.append(f"{prefix}user_id = %s")
        params.append(scope.user_id)
    if scope.since is not None:
        clauses.append(f"{prefix}processed_at >= %s")
        params.append(scope.since)
    if scope.until is not None:
        clauses.append(f"{prefix}processed_at < %s")
        params.append(scope.until)
    return " AND ".join(clauses), params


class ResultRepository:
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def upsert(self, result: FeedbackResult) -> bool:
        """
        Insert or overwrite the row for result.job_id.

        Returns True when the row was newly inserted, False when an existing
        row was overwritten (redelivery of an already processed job).
        """
        row = await fetch_one(
            """
            INSERT INTO feedback_results (
                job_id, user_id, text, status, sentiment, confidence, all_scores,
                intents, ai_processed, metadata, error, submitted_at, processed_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s::jsonb, %s, %s, %s)
            ON CONFLICT (job_id) DO UPDATE SET
                status = EXCLUDED.status,
                sentiment = EXCLUDED.sentiment,
                confidence = EXCLUDED.confidence,
                all_scores = EXCLUDED.all_scores,
                intents = EXCLUDED.intents,
                ai_processed = EXCLUDED.ai_processed,
                metadata = EXCLUDED.metadata,
                error = EXCLUDED.error,
                processed_at = EXCLUDED.processed_at
            RETURNING (xmax = 0) AS inserted
            """,
            (
                result.job_id,
                result.user_id,
                result.text,
                result.status.value,
                result.sentiment.value,
                result.confidence,
                json.dumps([{"label": s.label, "score": s.score} for s in result.all_scores]),
                json.dumps(result.intents),
                result.ai_processed,
                json.dumps(result.metadata),
                result.error,
                result.submitted_at,
                result.processed_at,
            ),
        )
        inserted = bool(row and row["inserted"])
        logger.debug(
            "Feedback result upserted",
            job_id=result.job_id,
            status=result.status.value,
            inserted=inserted,
        )
        return inserted

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get(self, job_id: str) -> FeedbackResult | None:
        row = await fetch_one(
            f"SELECT {_RESULT_COLUMNS} FROM feedback_results WHERE job_id = %s", (job_id,)
        )
        return _row_to_result(row) if row else None

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def exists(self, job_id: str) -> bool:
        return bool(
            await fetch_val("SELECT EXISTS (SELECT 1 FROM feedback_results WHERE job_id = %s)", (job_id,))
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_results(
        self,
        *,
        user_id: str | None = None,
        sentiment: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[FeedbackResult], int]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id:
            clauses.append("user_id = %s")
            params.append(user_id)
        if sentiment:
            clauses.append("sentiment = %s")
            params.append(sentiment)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = await fetch_all(
            f"""
            SELECT {_RESULT_COLUMNS} FROM feedback_results
            {where}
            ORDER BY processed_at DESC, job_id
            LIMIT %s OFFSET %s
            """,
            (*params, limit, offset),
        )
        total = await fetch_val(f"SELECT COUNT(*) FROM feedback_results {where}", tuple(params))
        return [_row_to_result(r) for r in rows], int(total or 0)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def delete_for_user(self, user_id: str) -> int:
        return await execute_query("DELETE FROM feedback_results WHERE user_id = %s", (user_id,))

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def sentiment_aggregates(
        self,
        scope: AnalyticsScope,
        current_window_start: datetime,
        previous_window_start: datetime,
    ) -> list[SentimentAggregateRow]:
        where, params = _scope_filter(scope)
        rows = await fetch_all(
            f"""
            SELECT
                sentiment,
                COUNT(*) AS count,
                COALESCE(AVG(confidence), 0) AS avg_confidence,
                COUNT(*) FILTER (WHERE processed_at >= %s) AS this_week,
                COUNT(*) FILTER (
                    WHERE processed_at >= %s AND processed_at < %s
                ) AS last_week
            FROM feedback_results
            WHERE {where}
            GROUP BY sentiment
            ORDER BY sentiment
            """,
            (current_window_start, previous_window_start, current_window_start, *params),
        )
        return [
            SentimentAggregateRow(
                sentiment=r["sentiment"],
                count=int(r["count"]),
                avg_confidence=float(r["avg_confidence"] or 0.0),
                this_week=int(r["this_week"]),
                last_week=int(r["last_week"]),
            )
            for r in rows
        ]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def intent_aggregates(
        self, scope: AnalyticsScope, limit: int | None = None
    ) -> list[IntentAggregateRow]:
        where, params = _scope_filter(scope, alias="r")
        limit_clause = "LIMIT %s" if limit else ""
        rows = await fetch_all(
            f"""
            SELECT
                i.intent AS intent,
                COUNT(*) AS count,
                MIN(r.processed_at) AS first_seen
            FROM feedback_results r
            CROSS JOIN LATERAL jsonb_array_elements_text(r.intents) AS i(intent)
            WHERE {where}
            GROUP BY i.intent
            ORDER BY count DESC, first_seen ASC, intent ASC
            {limit_clause}
            """,
            (*params, limit) if limit else tuple(params),
        )
        return [
            IntentAggregateRow(
                intent=r["intent"], count=int(r["count"]), first_seen=r["first_seen"]
            )
            for r in rows
        ]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def status_counts(self) -> dict[str, dict[str, int]]:
        """Counts grouped by (status, sentiment) for the metrics synchronizer."""
        rows = await fetch_all(
            """
            SELECT status, sentiment, COUNT(*) AS count
            FROM feedback_results
            GROUP BY status, sentiment
            """
        )
        counts: dict[str, dict[str, int]] = {}
        for r in rows:
            counts.setdefault(r["status"], {})[r["sentiment"]] = int(r["count"])
        return counts


result_repository = ResultRepository()
