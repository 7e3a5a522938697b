import pytest

from app.client.response_cache import ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_entry_expires_after_ttl(clock):
    cache = ResponseCache(ttl_seconds=30, clock=clock)
    cache.set("stats", {"total": 1})

    clock.now += 29
    assert cache.get("stats") == {"total": 1}

    clock.now += 1
    assert cache.get("stats") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_get_or_fetch_memoizes_within_ttl(clock):
    cache = ResponseCache(ttl_seconds=30, clock=clock)
    calls = []

    async def fetch():
        calls.append(1)
        return {"total": len(calls)}

    assert await cache.get_or_fetch("stats", fetch) == {"total": 1}
    assert await cache.get_or_fetch("stats", fetch) == {"total": 1}
    assert await cache.get_or_fetch("stats", fetch, force_refresh=True) == {"total": 2}
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_invalidate_forces_next_read_to_fetch(clock):
    cache = ResponseCache(ttl_seconds=30, clock=clock)
    values = iter([{"total": 1}, {"total": 2}])

    async def fetch():
        return next(values)

    await cache.get_or_fetch("stats", fetch)
    cache.invalidate("stats")

    assert await cache.get_or_fetch("stats", fetch) == {"total": 2}


def test_invalidate_all_and_prefix(clock):
    cache = ResponseCache(ttl_seconds=30, clock=clock)
    cache.set("feedback:history:1:10", [1])
    cache.set("feedback:history:2:10", [2])
    cache.set("admin:stats", {})

    cache.invalidate_prefix("feedback:history")
    assert len(cache) == 1

    cache.invalidate()
    assert len(cache) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "invalidate",
    [
        lambda cache: cache.invalidate("feedback:history:1:10"),
        lambda cache: cache.invalidate_prefix("feedback:history"),
        lambda cache: cache.invalidate(),
    ],
)
async def test_fetch_overtaken_by_invalidation_is_not_stored(clock, invalidate):
    cache = ResponseCache(ttl_seconds=30, clock=clock)
    values = iter([{"total": 0}, {"total": 1}])

    async def fetch_then_mutation_lands():
        value = next(values)
        invalidate(cache)
        return value

    assert await cache.get_or_fetch("feedback:history:1:10", fetch_then_mutation_lands) == {"total": 0}
    assert cache.get("feedback:history:1:10") is None

    async def fetch():
        return next(values)

    assert await cache.get_or_fetch("feedback:history:1:10", fetch) == {"total": 1}
    assert cache.get("feedback:history:1:10") == {"total": 1}
