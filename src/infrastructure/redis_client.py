"""Redis async connection pool plus the publisher / lock helpers built on it."""

import redis.asyncio as aioredis

from src.config import settings
from .events import RedisEventPublisher
from .locks import LockFactory

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url, decode_responses=True
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)


async def get_publisher() -> RedisEventPublisher:
    return RedisEventPublisher(await get_redis())


async def get_lock_factory() -> LockFactory:
    return LockFactory(await get_redis(), ttl_seconds=settings.driver_lock_ttl_seconds)


async def close_redis() -> None:
    await _pool.disconnect()
