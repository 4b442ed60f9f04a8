"""
Qrydex - Per-key lease

At most one in-flight job per business. Redis variant uses SET NX EX so a
crashed worker's lease expires on its own; the in-memory variant backs tests
and single-process runs.

Key Schema:
    qrydex:lease:{key}  → token of the holder
"""
import uuid
from typing import Dict, Optional, Tuple

import structlog
from redis import asyncio as aioredis

from qrydex.clock import SystemClock

logger = structlog.get_logger()

LEASE_PREFIX = "qrydex:lease:"

# Delete only if the caller still holds the lease.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisKeyLease:
    def __init__(self, redis_url: Optional[str] = None, client=None):
        if client is None:
            from qrydex.config import settings
            client = aioredis.from_url(redis_url or settings.REDIS_URL, decode_responses=True)
        self._client = client

    async def acquire(self, key: str, ttl: int) -> Optional[str]:
        token = uuid.uuid4().hex
        acquired = await self._client.set(LEASE_PREFIX + key, token, nx=True, ex=max(int(ttl), 1))
        if not acquired:
            logger.debug("lease_busy", key=key)
            return None
        return token

    async def release(self, key: str, token: str) -> bool:
        released = await self._client.eval(_RELEASE_SCRIPT, 1, LEASE_PREFIX + key, token)
        return bool(released)

    async def close(self) -> None:
        await self._client.aclose()


class MemoryKeyLease:
    def __init__(self, clock=None):
        self.clock = clock or SystemClock()
        self._held: Dict[str, Tuple[str, float]] = {}

    async def acquire(self, key: str, ttl: int) -> Optional[str]:
        now = self.clock.monotonic()
        held = self._held.get(key)
        if held and held[1] > now:
            return None
        token = uuid.uuid4().hex
        self._held[key] = (token, now + ttl)
        return token

    async def release(self, key: str, token: str) -> bool:
        held = self._held.get(key)
        if held and held[0] == token:
            del self._held[key]
            return True
        return False

    async def close(self) -> None:
        self._held.clear()
