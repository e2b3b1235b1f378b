"""
Redis key-value cache: OAuth tokens, mirrored votes, the feature list, rate-limit counters.
The cache is required; when Redis is unreachable operations fail with CacheUnavailableError.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from redis.exceptions import RedisError

from roadmap.config import settings
from roadmap.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lazy singleton for async Redis client
_redis_client = None


def get_redis():
    """Return async Redis client (lazy connect)."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    from redis.asyncio import from_url

    _redis_client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection (e.g. on app shutdown)."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except RedisError as e:
            logger.warning("Cache: error closing Redis: %s", e)
        _redis_client = None


async def get_cache() -> Any:
    """FastAPI dependency returning the cache handle; tests override it with an in-memory store."""
    return get_redis()


async def cache_call(awaitable: Awaitable[T], what: str) -> T:
    """Await a Redis call, turning connection and protocol errors into CacheUnavailableError."""
    try:
        return await awaitable
    except RedisError as e:
        logger.error("Cache: %s failed: %s", what, e)
        raise CacheUnavailableError() from e


async def scan_keys(cache: Any, pattern: str) -> list[str]:
    try:
        return [key async for key in cache.scan_iter(match=pattern)]
    except RedisError as e:
        logger.error("Cache: scan %s failed: %s", pattern, e)
        raise CacheUnavailableError() from e
