"""
Prometheus scrape endpoint.

Each scrape synchronizes the gauges (sweep, read, apply) under the
synchronizer's lock and then renders the registry.
"""

from fastapi import APIRouter, Depends, Request, Response

from app.dependencies import get_metrics_synchronizer
from app.services.metrics_sync_service import MetricsSynchronizer

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics(
    request: Request,
    synchronizer: MetricsSynchronizer = Depends(get_metrics_synchronizer),
):
    body, content_type = await synchronizer.scrape(request.headers.get("accept"))
    return Response(content=body, media_type=content_type)
