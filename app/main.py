"""
API process: submission, polling, analytics, presence, ratings and the
/metrics scrape endpoint.

The lifespan owns every long-lived resource: the database pool, the Redis
pool, the process's FeedbackMetrics registry, and the presence-sweep and
metrics-sync background tasks.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.db.pool import db_pool
from app.db.schema import ensure_schema
from app.infrastructure.observability.logging import get_logger, set_process_role, setup_logging
from app.infrastructure.observability.metrics import FeedbackMetrics
from app.middleware import HTTPMetricsMiddleware, RequestContextMiddleware
from app.repositories.job_status_repository import JobStatusRepository
from app.repositories.result_repository import result_repository
from app.repositories.user_repository import user_repository
from app.routes import admin, feedback, health, metrics, user
from app.services.analytics_service import AnalyticsService
from app.services.feedback_service import FeedbackService
from app.services.metrics_sync_service import MetricsSynchronizer, run_metrics_sync_loop
from app.services.presence_service import PresenceService, run_presence_sweeper
from app.services.queue_service import FeedbackQueue
from app.services.rating_service import RatingService
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
set_process_role("api")
logger = get_logger(__name__)


def build_services(app: FastAPI, metrics: FeedbackMetrics) -> None:
    """Wire services onto app.state (one instance each per process)."""
    presence = PresenceService(user_repository)
    app.state.metrics = metrics
    app.state.user_repository = user_repository
    app.state.presence_service = presence
    app.state.feedback_service = FeedbackService(
        queue=FeedbackQueue(fast_redis),
        results=result_repository,
        statuses=JobStatusRepository(fast_redis),
        metrics=metrics,
    )
    app.state.analytics_service = AnalyticsService(result_repository)
    app.state.rating_service = RatingService(metrics, user_repository)
    app.state.metrics_synchronizer = MetricsSynchronizer(
        metrics, presence, result_repository, user_repository
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        await ensure_schema()

        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    build_services(app, FeedbackMetrics())
    background = [
        asyncio.create_task(
            run_presence_sweeper(app.state.presence_service), name="presence-sweeper"
        ),
        asyncio.create_task(
            run_metrics_sync_loop(app.state.metrics_synchronizer), name="metrics-sync"
        ),
    ]

    yield

    logger.info("Application shutting down")

    for task in background:
        task.cancel()
    await asyncio.gather(*background, return_exceptions=True)

    shutdown_errors = []

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    # Close database pool last (may have active connections)
    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Feedback Pulse",
    description="Asynchronous feedback sentiment analysis with live metrics",
    version="0.1.0",
    lifespan=lifespan,
)

# Added last runs first: request id is bound before metrics/logging
app.add_middleware(HTTPMetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(feedback.router)
app.include_router(user.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
