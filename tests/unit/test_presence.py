import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from app.services.presence_service import (
    PresenceService,
    UserNotFoundError,
    run_presence_sweeper,
)

THRESHOLD_S = 120
T = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def presence(users):
    users.add_user("user-123")
    return PresenceService(users, staleness_s=THRESHOLD_S)


@pytest.mark.asyncio
async def test_heartbeat_marks_user_online(presence, users):
    last_active = await presence.heartbeat("user-123", now=T)

    assert last_active == T
    assert users.users["user-123"]["is_online"] is True
    assert users.users["user-123"]["last_active"] == T


@pytest.mark.asyncio
async def test_heartbeat_unknown_user(presence):
    with pytest.raises(UserNotFoundError):
        await presence.heartbeat("ghost", now=T)


@pytest.mark.asyncio
async def test_still_online_just_inside_threshold(presence, users):
    await presence.heartbeat("user-123", now=T)

    demoted = await presence.sweep(now=T + timedelta(seconds=THRESHOLD_S - 1))

    assert demoted == 0
    assert users.users["user-123"]["is_online"] is True


@pytest.mark.asyncio
async def test_offline_after_threshold_and_sweep(presence, users):
    await presence.heartbeat("user-123", now=T)

    demoted = await presence.sweep(now=T + timedelta(seconds=THRESHOLD_S, milliseconds=1))

    assert demoted == 1
    assert users.users["user-123"]["is_online"] is False


@pytest.mark.asyncio
async def test_heartbeat_after_sweep_brings_user_back(presence, users):
    await presence.heartbeat("user-123", now=T)
    await presence.sweep(now=T + timedelta(minutes=10))

    await presence.heartbeat("user-123", now=T + timedelta(minutes=11))

    assert users.users["user-123"]["is_online"] is True
    assert (await users.counts()).online == 1


@pytest.mark.asyncio
async def test_sweeper_loop_survives_errors_and_stops_on_cancel():
    presence = AsyncMock()
    presence.staleness_s = THRESHOLD_S
    presence.sweep.side_effect = [RuntimeError("db down"), 0, 0, 0, 0, 0, 0, 0, 0, 0]

    task = asyncio.create_task(run_presence_sweeper(presence, interval_s=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert presence.sweep.await_count >= 2
    assert task.done()
