"""
Cache layer interface and key layout.
"""

from typing import Any, Optional, Protocol, runtime_checkable

from shared.logging import get_logger


@runtime_checkable
class CacheLayer(Protocol):
    """TTL + explicit-invalidation memoization in front of the stores."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    async def delete(self, *keys: str) -> int:
        ...

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob-style pattern (``*`` wildcard)."""
        ...


GLOBAL_SCOPE = "global"
ALL_RESOURCES = "all"


def permission_key(user_id: str, code: str, workspace_id: Optional[str] = None,
                   resource_id: Optional[str] = None) -> str:
    return f"permission:{user_id}:{code}:{workspace_id or GLOBAL_SCOPE}:{resource_id or ALL_RESOURCES}"


def permission_list_pattern(user_id: str) -> str:
    return f"user-permissions:{user_id}:*"


def permission_pattern(user_id: str) -> str:
    """Every single-permission key of a principal, across all workspaces."""
    return f"permission:{user_id}:*"


def permission_list_key(user_id: str, workspace_id: Optional[str] = None) -> str:
    return f"user-permissions:{user_id}:{workspace_id or GLOBAL_SCOPE}"


def plan_key(user_id: str) -> str:
    return f"user-plan:{user_id}"


def principal_key(user_id: str) -> str:
    return f"principal:{user_id}"


class SafeCache:
    """Wraps a cache layer so its failures never fail a lookup.

    Read errors count as a miss and write/delete errors as a no-op; both are
    logged and counted.
    """

    def __init__(self, cache: CacheLayer, metrics=None, logger_name: str = "policy.cache"):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger(logger_name)

    def _record(self, operation: str, result: str):
        if self.metrics:
            self.metrics.record_cache_operation(operation, result)

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self.cache.get(key)
        except Exception as e:
            self.logger.warning("Cache read failed", key=key, error=str(e))
            self._record("get", "error")
            return None
        self._record("get", "miss" if value is None else "hit")
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.cache.set(key, value, ttl)
            self._record("set", "ok")
        except Exception as e:
            self.logger.warning("Cache write failed", key=key, error=str(e))
            self._record("set", "error")

    async def delete(self, *keys: str) -> int:
        try:
            removed = await self.cache.delete(*keys)
            self._record("delete", "ok")
            return removed
        except Exception as e:
            self.logger.error("Cache delete failed", keys=list(keys), error=str(e))
            self._record("delete", "error")
            return 0

    async def delete_pattern(self, pattern: str) -> int:
        try:
            removed = await self.cache.delete_pattern(pattern)
            self._record("delete_pattern", "ok")
            return removed
        except Exception as e:
            self.logger.error("Cache pattern delete failed", pattern=pattern, error=str(e))
            self._record("delete_pattern", "error")
            return 0
