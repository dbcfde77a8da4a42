"""Invalidation signal for the analytics query cache."""

import logging
from typing import Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class CacheInvalidator(Protocol):
    async def invalidate(self, pattern: str) -> int:
        """Drop cached entries matching ``pattern``; return how many were removed."""
        ...


class NullCacheInvalidator:
    """Used when no cache is configured."""

    async def invalidate(self, pattern: str) -> int:
        return 0


class RedisCacheInvalidator:
    """
    Deletes cached analytics responses from Redis.

    The query layer caches under ``analytics:<path>:<query>`` keys; after new
    tickets land those entries are stale. Keys are walked with SCAN so a large
    keyspace does not block the server.
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheInvalidator":
        return cls(redis.from_url(url))

    async def invalidate(self, pattern: str) -> int:
        keys = [key async for key in self._client.scan_iter(match=pattern)]
        if not keys:
            return 0

        deleted = await self._client.delete(*keys)
        logger.info(f"Cleared {deleted} cache keys matching {pattern}")
        return deleted

    async def close(self) -> None:
        await self._client.aclose()


def build_cache_invalidator(redis_url: str | None) -> CacheInvalidator:
    if not redis_url:
        logger.warning("REDIS_URL not configured - cache invalidation disabled")
        return NullCacheInvalidator()
    return RedisCacheInvalidator.from_url(redis_url)
