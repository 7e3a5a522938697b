"""
Async HTTP client for the feedback API, as used by dashboards and scripts.

Read endpoints go through a ResponseCache; every mutating call invalidates
the keys it affects before the request is sent and again once it returns.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import httpx

from app.client.response_cache import ResponseCache
from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 10
MAX_RETRIES = 3
BACKOFF_FACTOR = 0.5
RETRY_STATUS_CODES = {502, 503, 504}

STATS_KEY = "feedback:stats"
HISTORY_KEY = "feedback:history"
ADMIN_STATS_KEY = "admin:stats"
RATING_KEY = "user:rating"
RATING_STATS_KEY = "admin:user-ratings"


class FeedbackApiError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}

    @property
    def recoverable(self) -> bool:
        return self.status_code in RETRY_STATUS_CODES


class FeedbackApiClient:
    """
    Client for one authenticated caller.

    Pass ``transport`` (e.g. httpx.MockTransport) to run without a server.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        cache: ResponseCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_factor: float = BACKOFF_FACTOR,
    ):
        self.cache = cache or ResponseCache(ttl_seconds=settings.CLIENT_CACHE_TTL_SECONDS)
        self.backoff_factor = backoff_factor
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(REQUEST_TIMEOUT),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "FeedbackApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        """Send with retry on 502/503/504 and return JSON."""
        for attempt in range(1, MAX_RETRIES + 1):
            response = await self._client.request(method, url, **kwargs)
            if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                backoff = self.backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "Feedback API retrying request",
                    url=url,
                    attempt=attempt,
                    status_code=response.status_code,
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
                continue
            return self._handle_response(response, f"{method} {url}")
        raise RuntimeError("Feedback API retry loop exhausted")

    def _handle_response(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as e:
                raise FeedbackApiError(f"Invalid response format: {e}") from e

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        detail = data.get("detail") if isinstance(data, dict) else None
        logger.warning(
            "Feedback API request failed",
            operation=operation,
            status_code=response.status_code,
            detail=detail,
        )
        raise FeedbackApiError(
            detail or f"{operation} failed with {response.status_code}",
            status_code=response.status_code,
            response_data=data if isinstance(data, dict) else {},
        )

    # ------------------------------------------------------------------
    # Reads (cached)
    # ------------------------------------------------------------------

    async def get_stats(self, force_refresh: bool = False) -> dict[str, Any]:
        return await self.cache.get_or_fetch(
            STATS_KEY, lambda: self._request("GET", "/feedback/stats"), force_refresh
        )

    async def get_history(self, page: int = 1, limit: int = 10) -> dict[str, Any]:
        return await self.cache.get_or_fetch(
            f"{HISTORY_KEY}:{page}:{limit}",
            lambda: self._request("GET", "/feedback/history", params={"page": page, "limit": limit}),
        )

    async def get_admin_stats(self, force_refresh: bool = False) -> dict[str, Any]:
        return await self.cache.get_or_fetch(
            ADMIN_STATS_KEY, lambda: self._request("GET", "/admin/stats"), force_refresh
        )

    async def get_rating(self) -> dict[str, Any]:
        return await self.cache.get_or_fetch(
            RATING_KEY, lambda: self._request("GET", "/user/rating")
        )

    async def get_rating_stats(self, force_refresh: bool = False) -> dict[str, Any]:
        return await self.cache.get_or_fetch(
            RATING_STATS_KEY, lambda: self._request("GET", "/admin/user-ratings"), force_refresh
        )

    # ------------------------------------------------------------------
    # Polling (never cached: status changes under the caller)
    # ------------------------------------------------------------------

    async def get_result(self, job_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/feedback/result/{job_id}")

    async def wait_for_result(
        self, job_id: str, timeout_s: float = 30.0, interval_s: float = 0.5
    ) -> dict[str, Any]:
        """Poll until the job is completed or failed, or raise TimeoutError."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while True:
            status = await self.get_result(job_id)
            if status.get("status") in ("completed", "failed"):
                self._invalidate_feedback_reads()
                return status
            if loop.time() >= deadline:
                raise TimeoutError(f"Job {job_id} still {status.get('status')} after {timeout_s}s")
            await asyncio.sleep(interval_s)

    # ------------------------------------------------------------------
    # Mutations (invalidate before sending and again once answered)
    # ------------------------------------------------------------------

    def _invalidate_feedback_reads(self) -> None:
        self.cache.invalidate(STATS_KEY)
        self.cache.invalidate(ADMIN_STATS_KEY)
        self.cache.invalidate_prefix(HISTORY_KEY)

    def _invalidate_rating_reads(self) -> None:
        self.cache.invalidate(RATING_KEY)
        self.cache.invalidate(RATING_STATS_KEY)
        self.cache.invalidate(ADMIN_STATS_KEY)

    async def _mutate(
        self, invalidate: Callable[[], None], method: str, url: str, **kwargs
    ) -> dict[str, Any]:
        invalidate()
        try:
            return await self._request(method, url, **kwargs)
        finally:
            # The server may have applied the write even when the call failed
            invalidate()

    async def submit_feedback(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._mutate(
            self._invalidate_feedback_reads,
            "POST",
            "/feedback/submit",
            json={"text": text, "metadata": metadata or {}},
        )

    async def submit_rating(self, rating: int, message: str = "") -> dict[str, Any]:
        return await self._mutate(
            self._invalidate_rating_reads,
            "POST",
            "/user/rating",
            json={"rating": rating, "message": message},
        )

    async def clear_history(self) -> dict[str, Any]:
        return await self._mutate(self._invalidate_feedback_reads, "DELETE", "/feedback/clear")

    async def heartbeat(self) -> dict[str, Any]:
        # Online counts live in admin stats
        return await self._mutate(
            lambda: self.cache.invalidate(ADMIN_STATS_KEY), "POST", "/user/heartbeat"
        )

    def clear_cache(self) -> None:
        self.cache.invalidate()
