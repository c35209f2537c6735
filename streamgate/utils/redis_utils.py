"""
Redis utilities for cross-worker counters.

IMPORTANT: Redis is OPTIONAL. If settings.redis_url is None, ``get_redis`` returns
None and callers fall back to in-process state (see ``streamgate.usage``).
"""

import logging
from typing import Optional

from streamgate.configs import settings

logger = logging.getLogger(__name__)

_redis_client = None


def is_redis_configured() -> bool:
    """Check if Redis URL is configured in settings."""
    return settings.redis_url is not None and settings.redis_url.strip() != ""


async def get_redis():
    """
    Get or create the Redis connection pool (lazy singleton).

    Returns None if Redis is not configured or not reachable.
    """
    global _redis_client

    if not is_redis_configured():
        return None

    if _redis_client is None:
        import redis.asyncio as redis

        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        try:
            await _redis_client.ping()
            logger.info(f"Redis connected: {settings.redis_url}")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            _redis_client = None
            return None
    return _redis_client


async def close_redis():
    """Close the Redis connection pool (call on shutdown)."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


async def increment_hash_field(key: str, field: str, amount: int = 1) -> Optional[int]:
    """
    Atomically increment ``field`` of hash ``key``.

    Returns the new value, or None when Redis is not available.
    """
    r = await get_redis()
    if r is None:
        return None
    return await r.hincrby(key, field, amount)


async def get_hash_field(key: str, field: str) -> Optional[int]:
    r = await get_redis()
    if r is None:
        return None
    value = await r.hget(key, field)
    return int(value) if value is not None else 0
