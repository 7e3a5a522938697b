"""
Middleware components for request processing.

This package contains middleware for:
- Request context (request ID bound into structured logs)
- HTTP request metrics
"""

from app.middleware.http_metrics import HTTPMetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
    "HTTPMetricsMiddleware",
]
