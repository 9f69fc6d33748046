"""Redis connection configuration."""

from typing import Optional

import redis.asyncio as redis

from vod_pipeline.core.config import get_settings

_redis_client: Optional[redis.Redis] = None


def create_redis(url: Optional[str] = None) -> redis.Redis:
    """Create a new Redis client.

    Args:
        url: Redis URL (defaults to REDIS_URL)
    """
    return redis.from_url(url or get_settings().REDIS_URL, decode_responses=True)


async def get_redis() -> redis.Redis:
    """Get the shared Redis client instance."""
    global _redis_client
    if _redis_client is None:
        _redis_client = create_redis()
    return _redis_client

