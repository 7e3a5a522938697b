"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the matching long-running coroutine.

    python -m app.jobs.worker feedback_worker
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.feedback_worker import start_feedback_worker
from app.services.metrics_sync_service import start_metrics_sync_loop
from app.services.presence_service import start_presence_sweeper

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "feedback_worker": start_feedback_worker,
    "presence_sweeper": start_presence_sweeper,
    "metrics_sync": start_metrics_sync_loop,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "feedback_worker").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> int:
    """CLI entrypoint. Returns the process exit code."""
    setup_logging(settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    try:
        asyncio.run(run_worker(job_name))
    except KeyboardInterrupt:
        logger.info("Background worker interrupted", job=job_name)
    except Exception as e:
        logger.error(
            "Background worker failed",
            job=job_name,
            error=str(e),
            error_type=type(e).__name__,
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
