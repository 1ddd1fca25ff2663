"""Shared fixtures for the Rangewatch test suite."""

import fakeredis.aioredis
import pytest

from rangewatch.cache import redis_cache
from rangewatch.models.operation import PollingOptions
from rangewatch.polling.tracker import OperationTracker


@pytest.fixture
def fast_options() -> PollingOptions:
    return PollingOptions(interval_ms=5, stale_after_ms=60_000)


@pytest.fixture
async def make_tracker(fast_options):
    """Build trackers that are stopped again at teardown."""
    trackers: list[OperationTracker] = []

    def _make(fetch, options=None, owner_id="JD"):
        tracker = OperationTracker(owner_id, fetch, options or fast_options)
        trackers.append(tracker)
        return tracker

    yield _make

    for tracker in trackers:
        tracker.stop()


@pytest.fixture
async def fake_redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    redis_cache.use_client(client)
    yield client
    await redis_cache.disconnect()
