"""
Health check endpoints: liveness, and readiness across Redis and the
database pool.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.redis_client import fast_redis

router = APIRouter()


async def redis_ping() -> bool:
    return await fast_redis.ping()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "feedback-pulse"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check across Redis, the database pool and the queue."""
    checks = {}
    overall_ok = True

    # 1) Redis
    t0 = time.time()
    try:
        redis_ok = await redis_ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["redis"] = {"ok": bool(redis_ok), "latency_ms": latency_ms}
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        redis_ok = False
        overall_ok = False
    log_health_check("redis", bool(redis_ok), latency_ms)

    # 2) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"].update(db_health["pool_stats"])
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False
    log_health_check(
        "database", checks["database"]["ok"], checks["database"]["latency_ms"],
        checks["database"].get("error"),
    )

    # 3) Queue depth (informational)
    feedback_service = getattr(request.app.state, "feedback_service", None)
    if feedback_service is not None and redis_ok:
        checks["queue"] = {"ok": True, **await feedback_service.queue.depth()}

    checks["configuration"] = {
        "ok": True,
        "environment": settings.environment,
        "advanced_classifier": settings.advanced_classifier_enabled(),
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
