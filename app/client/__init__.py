"""
HTTP client for the feedback API with a short-TTL response cache.
"""

from app.client.api_client import FeedbackApiClient, FeedbackApiError
from app.client.response_cache import ResponseCache

__all__ = [
    "FeedbackApiClient",
    "FeedbackApiError",
    "ResponseCache",
]
