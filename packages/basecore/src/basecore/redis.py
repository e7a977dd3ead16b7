"""
Redis client utilities for basecore.

Provides lazy-initialized Redis clients to avoid import-time connections.
"""

import functools

import redis
import redis.asyncio as aioredis

from basecore.settings import get_settings


@functools.lru_cache()
def get_redis_url() -> str:
    """Get Redis URL from settings."""
    return get_settings().REDIS_URL


@functools.lru_cache()
def get_redis_client() -> redis.Redis:
    """
    Get Redis client (cached).

    This function lazily initializes the Redis client to avoid import-time connections.
    """
    return redis.from_url(get_redis_url(), decode_responses=True)


def get_async_redis_client() -> aioredis.Redis:
    """
    Create an asyncio Redis client.

    Not cached: asyncio clients are bound to the event loop that first uses them.
    """
    return aioredis.from_url(get_redis_url(), decode_responses=True)
