"""
Redis Call Slot Store
Cross-process in-flight call counters

Key:
- dialer:org:{organization_id}:inflight - integer counter per organization
"""
import logging
from typing import Optional

import redis.asyncio as redis

from campaign_dialer.domain.interfaces.call_slot_store import CallSlotStore

logger = logging.getLogger(__name__)


# Compare-and-increment in one server-side step
ACQUIRE_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return 0
end
redis.call('INCR', KEYS[1])
return 1
"""

RELEASE_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current <= 0 then
    return 0
end
return redis.call('DECR', KEYS[1])
"""


class RedisCallSlotStore(CallSlotStore):
    """
    In-flight counters shared by every scheduler worker and the webhook API.
    """

    INFLIGHT_KEY = "dialer:org:{organization_id}:inflight"

    def __init__(self, redis_client=None, redis_url: str = "redis://localhost:6379"):
        """
        Args:
            redis_client: Optional pre-configured Redis client
            redis_url: Used when no client is given
        """
        self._redis = redis_client
        self._redis_url = redis_url

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            logger.info(f"RedisCallSlotStore connected to Redis: {self._redis_url}")
        return self._redis

    def _key(self, organization_id: str) -> str:
        return self.INFLIGHT_KEY.format(organization_id=organization_id)

    async def try_acquire(self, organization_id: str, limit: int) -> bool:
        client = await self._client()
        acquired = await client.eval(ACQUIRE_SCRIPT, 1, self._key(organization_id), limit)
        return int(acquired) == 1

    async def release(self, organization_id: str) -> None:
        client = await self._client()
        await client.eval(RELEASE_SCRIPT, 1, self._key(organization_id))

    async def count(self, organization_id: str) -> int:
        client = await self._client()
        value: Optional[str] = await client.get(self._key(organization_id))
        return int(value or 0)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
