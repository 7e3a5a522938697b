"""
HTTP metrics middleware.

Records http_requests{method,route,status_code} and
http_request_duration_seconds{method,route} on the app's FeedbackMetrics.
The route label is the matched route template (e.g.
/feedback/result/{job_id}) so job ids never become label values.
"""

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.infrastructure.observability.logging import log_request

UNMATCHED_ROUTE = "unmatched"
# Not counted: scrape traffic
EXCLUDED_PATHS = frozenset({"/metrics"})


def route_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED_ROUTE


class HTTPMetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_s = time.perf_counter() - start_time
            metrics = getattr(request.app.state, "metrics", None)
            if metrics is not None:
                metrics.record_http_request(
                    request.method, route_label(request), status_code, duration_s
                )
            log_request(
                request.method, request.url.path, status_code, round(duration_s * 1000, 2)
            )
