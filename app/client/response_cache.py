"""
Short-TTL memoization of read responses for API consumers (dashboards).

A latency optimization only: entries expire after ttl_seconds, and an
invalidation always wins over a read that was already in flight when it
happened. Every key carries a generation that invalidate() bumps; a fetch
only stores its response if the generation it started under is unchanged.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 30.0


@dataclass(slots=True)
class CacheEntry:
    value: Any
    stored_at: float


class ResponseCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._epoch = 0
        self._key_generations: dict[str, int] = {}
        self._prefix_generations: dict[str, int] = {}

    def generation(self, key: str) -> tuple[int, int, int]:
        """Changes whenever key is invalidated, directly, by prefix, or by a full clear."""
        by_prefix = sum(
            count for prefix, count in self._prefix_generations.items() if key.startswith(prefix)
        )
        return self._epoch, self._key_generations.get(key, 0), by_prefix

    def get(self, key: str) -> Any | None:
        """Cached value if younger than the TTL, else None (and the entry is dropped)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        force_refresh: bool = False,
    ) -> Any:
        if not force_refresh:
            cached = self.get(key)
            if cached is not None:
                logger.debug("Response cache hit", key=key)
                return cached

        started_under = self.generation(key)
        value = await fetch()
        if self.generation(key) == started_under:
            self.set(key, value)
        else:
            logger.debug("Discarding response fetched before invalidation", key=key)
        return value

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or everything when key is None."""
        if key is None:
            self._entries.clear()
            self._epoch += 1
        else:
            self._entries.pop(key, None)
            self._key_generations[key] = self._key_generations.get(key, 0) + 1
        logger.debug("Response cache invalidated", key=key or "*")

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]
        self._prefix_generations[prefix] = self._prefix_generations.get(prefix, 0) + 1

    def __len__(self) -> int:
        return len(self._entries)
