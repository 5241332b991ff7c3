"""
In-process cache with a controllable clock.
"""

import fnmatch
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from shared.logging import get_logger


class InMemoryCache:
    """Dict-backed TTL cache.

    Entries expire lazily on read. ``clock`` returns seconds and defaults to
    ``time.monotonic``; tests pass a fake to step time deterministically.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.logger = get_logger("policy.cache.memory")
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    async def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matches = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in matches:
                del self._entries[key]
        if matches:
            self.logger.debug("Invalidated cache keys", pattern=pattern, count=len(matches))
        return len(matches)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
