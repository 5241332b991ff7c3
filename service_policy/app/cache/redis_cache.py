"""
Redis caching layer for the policy service.
"""

import json
from typing import Any, Dict, Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import ExternalServiceError


class RedisCache:
    """Redis-backed implementation of the cache layer.

    Values are stored as JSON under a common prefix so that pattern
    invalidation never touches keys owned by other services.
    """

    def __init__(self, redis_url: str, prefix: str = "policy:"):
        self.redis_url = redis_url
        self.prefix = prefix
        self.logger = get_logger("policy.cache.redis")
        self.redis: Optional[redis.Redis] = None

        self.max_ttl = 3600
        self.min_ttl = 1

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis cache started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ExternalServiceError("redis", str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis cache stopped")

    async def get(self, key: str) -> Optional[Any]:
        cached = await self.redis.get(self._key(key))
        if cached is None:
            return None
        return json.loads(cached)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        ttl = max(self.min_ttl, min(self.max_ttl, int(ttl)))
        await self.redis.setex(self._key(key), ttl, json.dumps(value))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.redis.delete(*(self._key(key) for key in keys))

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self.redis.scan_iter(match=self._key(pattern), count=500)]
        if not keys:
            return 0
        removed = await self.redis.delete(*keys)
        self.logger.info("Invalidated cache keys", pattern=pattern, count=removed)
        return removed

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        try:
            info = await self.redis.info()
            return {
                "redis_version": info.get("redis_version"),
                "used_memory": info.get("used_memory_human"),
                "keyspace_hits": info.get("keyspace_hits"),
                "keyspace_misses": info.get("keyspace_misses"),
                "hit_rate": self._calculate_hit_rate(info)
            }
        except Exception as e:
            self.logger.error("Error getting cache stats", error=str(e))
            return {}

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _calculate_hit_rate(self, info: Dict[str, Any]) -> float:
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        total = hits + misses

        if total == 0:
            return 0.0

        return hits / total

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
