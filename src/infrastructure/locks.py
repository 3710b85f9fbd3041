"""
Redis-based distributed locks.

Two kinds of lock are taken:

* ``lock:driver:<id>`` -- claimed when a driver is offered a job, so two
  concurrent dispatches can never offer the same driver.  It is left to
  expire (TTL) once the offer is committed; by then the driver row is
  marked unavailable and no longer returned as a candidate.
* ``lock:redispatch`` -- ensures only one worker runs a re-dispatch cycle
  at a time.

Acquire uses SET NX EX; release is an atomic check-and-delete in Lua so a
lock is only ever deleted by the holder that set it.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())
        self.held = False

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.held

    async def release(self) -> None:
        """Release only if we still own the lock."""
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        self.held = False

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class LockFactory:
    """Builds named locks against one Redis client."""

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 30):
        self.redis = client
        self.ttl = ttl_seconds

    def __call__(self, key: str, ttl_seconds: int | None = None) -> DistributedLock:
        return DistributedLock(self.redis, key, ttl_seconds or self.ttl)

    def driver(self, driver_id: str) -> DistributedLock:
        return self(f"driver:{driver_id}")
