"""
Table definitions for the feedback pipeline.

Applied idempotently at startup so a fresh database works without a
separate migration step. The users table is owned by the auth/profile
service; only the columns this service reads or writes are declared.
"""

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT,
        email TEXT UNIQUE,
        role TEXT NOT NULL DEFAULT 'member',
        is_account_verified BOOLEAN NOT NULL DEFAULT FALSE,
        last_active TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        is_online BOOLEAN NOT NULL DEFAULT FALSE,
        rating_score SMALLINT CHECK (rating_score BETWEEN 1 AND 5),
        rating_message VARCHAR(1000) NOT NULL DEFAULT '',
        rating_created_at TIMESTAMPTZ,
        rating_updated_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_users_online_last_active
        ON users (last_active) WHERE is_online
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback_results (
        job_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        text TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('completed', 'failed')),
        sentiment TEXT NOT NULL,
        confidence DOUBLE PRECISION NOT NULL DEFAULT 0
            CHECK (confidence >= 0 AND confidence <= 1),
        all_scores JSONB NOT NULL DEFAULT '[]'::jsonb,
        intents JSONB NOT NULL DEFAULT '[]'::jsonb,
        ai_processed BOOLEAN NOT NULL DEFAULT FALSE,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        error TEXT,
        submitted_at TIMESTAMPTZ NOT NULL,
        processed_at TIMESTAMPTZ NOT NULL,
        CHECK (processed_at >= submitted_at)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_feedback_results_user_processed
        ON feedback_results (user_id, processed_at DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_feedback_results_status_processed
        ON feedback_results (status, processed_at DESC)
    """,
)


async def ensure_schema() -> None:
    """Create tables and indexes if they do not exist yet."""
    async with db_pool.connection() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info("Database schema ensured", statements=len(SCHEMA_STATEMENTS))
