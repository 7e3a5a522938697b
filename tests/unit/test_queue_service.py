import pytest

from app.models.domain.feedback_domain import FeedbackJob
from app.services.queue_service import FeedbackQueue, QueueUnavailableError


def _job(job_id: str = "job-1", attempts: int = 0) -> FeedbackJob:
    return FeedbackJob(job_id=job_id, user_id="user-123", text="Great service!", attempts=attempts)


def _peer(queue: FeedbackQueue, fake_redis, worker_id: str) -> FeedbackQueue:
    """Another worker process sharing the same keys."""
    return FeedbackQueue(
        fake_redis,
        queue_key=queue.queue_key,
        inflight_key=queue.inflight_prefix,
        delayed_key=queue.delayed_key,
        workers_key=queue.workers_key,
        worker_id=worker_id,
    )


@pytest.mark.asyncio
async def test_enqueue_then_reserve_is_fifo(queue):
    await queue.enqueue(_job("a"))
    await queue.enqueue(_job("b"))

    first = await queue.reserve(timeout=0)
    second = await queue.reserve(timeout=0)

    assert first.job.job_id == "a"
    assert second.job.job_id == "b"
    assert await queue.reserve(timeout=0) is None


@pytest.mark.asyncio
async def test_reserved_job_stays_in_flight_until_acked(queue, fake_redis):
    await queue.enqueue(_job())
    reserved = await queue.reserve(timeout=0)

    assert await queue.depth() == {"queued": 0, "inflight": 1}
    assert await queue.ack(reserved) is True
    assert await queue.depth() == {"queued": 0, "inflight": 0}


@pytest.mark.asyncio
async def test_enqueue_retries_transient_failures(queue, fake_redis):
    fake_redis.push_failures = 2

    await queue.enqueue(_job(), retries=2, base_delay=0)

    assert await queue.depth() == {"queued": 1, "inflight": 0}


@pytest.mark.asyncio
async def test_enqueue_raises_when_broker_stays_down(queue, fake_redis):
    fake_redis.available = False

    with pytest.raises(QueueUnavailableError) as exc:
        await queue.enqueue(_job(), retries=1, base_delay=0)

    assert exc.value.recoverable is True


@pytest.mark.asyncio
async def test_recover_inflight_requeues_jobs_of_expired_worker(queue, fake_redis):
    crashed = _peer(queue, fake_redis, "crashed")
    await crashed.renew_lease(now=0)
    await queue.enqueue(_job("a"))
    await queue.enqueue(_job("b"))
    await crashed.reserve(timeout=0)
    await crashed.reserve(timeout=0)

    recovered = await queue.recover_inflight()

    assert recovered == 2
    assert await queue.depth() == {"queued": 2, "inflight": 0}
    redelivered = {(await queue.reserve(timeout=0)).job.job_id for _ in range(2)}
    assert redelivered == {"a", "b"}


@pytest.mark.asyncio
async def test_recover_inflight_leaves_live_peer_jobs_alone(queue, fake_redis):
    peer = _peer(queue, fake_redis, "peer")
    await peer.renew_lease()
    await queue.enqueue(_job("a"))
    held = await peer.reserve(timeout=0)

    assert await queue.recover_inflight() == 0
    assert await queue.reserve(timeout=0) is None
    assert await peer.ack(held) is True
    assert await queue.depth() == {"queued": 0, "inflight": 0}


@pytest.mark.asyncio
async def test_expired_worker_jobs_are_reclaimed_once(queue, fake_redis):
    crashed = _peer(queue, fake_redis, "crashed")
    other = _peer(queue, fake_redis, "other")
    await crashed.renew_lease(now=0)
    await queue.enqueue(_job("a"))
    await crashed.reserve(timeout=0)

    assert await queue.recover_inflight() == 1
    assert await other.recover_inflight() == 0
    assert await queue.depth() == {"queued": 1, "inflight": 0}


@pytest.mark.asyncio
async def test_worker_never_reclaims_its_own_jobs(queue):
    await queue.renew_lease(now=0)
    await queue.enqueue(_job("a"))
    await queue.reserve(timeout=0)

    assert await queue.recover_inflight() == 0
    assert await queue.depth() == {"queued": 0, "inflight": 1}


@pytest.mark.asyncio
async def test_delayed_retry_is_promoted_only_when_due(queue, fake_redis):
    await queue.schedule_retry(_job(attempts=1), delay_s=10)

    assert await queue.promote_due(now=0) == 0
    assert await queue.reserve(timeout=0) is None

    assert await queue.promote_due(now=10**12) == 1
    reserved = await queue.reserve(timeout=0)
    assert reserved.job.attempts == 1


@pytest.mark.asyncio
async def test_malformed_payload_is_reported_not_raised(queue, fake_redis):
    await fake_redis.push_to_list(queue.queue_key, "{not json")

    reserved = await queue.reserve(timeout=0)

    assert reserved.job is None
    assert reserved.decode_error
    assert reserved.payload == "{not json"
