"""Redis connection pool for the shared rate-limit store"""
import redis.asyncio as redis
from typing import Optional

from slotbook.config.settings import get_settings

settings = get_settings()

_redis_pool: Optional[redis.ConnectionPool] = None


def get_redis_pool() -> redis.ConnectionPool:
    """Get or create the process-wide connection pool"""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            retry_on_timeout=True,
            decode_responses=True,
        )
    return _redis_pool


async def get_redis() -> redis.Redis:
    """Client bound to the shared pool; closing it leaves the pool open"""
    return redis.Redis(connection_pool=get_redis_pool())


async def close_redis_pool() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


class RedisKeys:
    """Redis key patterns for consistent naming"""

    # Sorted set of booking attempt timestamps per client origin
    RATE_LIMIT_BOOKINGS = "ratelimit:bookings:{origin}"
