"""
Unit Tests for Redis Call Slot Store
"""
from unittest.mock import AsyncMock

import pytest

from campaign_dialer.infrastructure.cache.redis_slot_store import (
    ACQUIRE_SCRIPT,
    RELEASE_SCRIPT,
    RedisCallSlotStore,
)


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.eval = AsyncMock(return_value=1)
    client.get = AsyncMock(return_value="3")
    return client


class TestRedisCallSlotStore:
    """Tests for the Lua-backed counters"""

    @pytest.mark.asyncio
    async def test_acquire_runs_script_with_limit(self, redis_client):
        store = RedisCallSlotStore(redis_client=redis_client)

        assert await store.try_acquire("org-1", 5) is True
        redis_client.eval.assert_awaited_once_with(ACQUIRE_SCRIPT, 1, "dialer:org:org-1:inflight", 5)

    @pytest.mark.asyncio
    async def test_acquire_denied_at_limit(self, redis_client):
        redis_client.eval.return_value = 0
        assert await RedisCallSlotStore(redis_client=redis_client).try_acquire("org-1", 5) is False

    @pytest.mark.asyncio
    async def test_release_runs_script(self, redis_client):
        await RedisCallSlotStore(redis_client=redis_client).release("org-1")
        redis_client.eval.assert_awaited_once_with(RELEASE_SCRIPT, 1, "dialer:org:org-1:inflight")

    @pytest.mark.asyncio
    async def test_count(self, redis_client):
        store = RedisCallSlotStore(redis_client=redis_client)
        assert await store.count("org-1") == 3

        redis_client.get.return_value = None
        assert await store.count("org-1") == 0

    @pytest.mark.asyncio
    async def test_close(self, redis_client):
        store = RedisCallSlotStore(redis_client=redis_client)
        await store.close()
        redis_client.close.assert_awaited_once()
