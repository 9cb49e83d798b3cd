from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio
from datetime import datetime, timedelta

import structlog

logger = structlog.get_logger(__name__)


class CacheMemoryStore:
    """In-memory cache store with sliding TTL.

    Every successful read pushes the entry's expiry back by its TTL, so
    objects in active use (agents of a running session) are never evicted.
    """

    def __init__(self, default_ttl: float = 3600):
        self.default_ttl = default_ttl
        self.cache: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Set a value in cache with TTL"""

        async with self._lock:
            self._store(key, value, ttl or self.default_ttl)

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""

        async with self._lock:
            return self._touch(key)

    async def get_or_create(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value or build, store and return a new one"""

        async with self._lock:
            value = self._touch(key)
            if value is not None:
                return value

            value = await factory()
            self._store(key, value, self.default_ttl)
            return value

    async def delete(self, key: str) -> bool:
        """Delete a key from cache"""

        async with self._lock:
            if key in self.cache:
                del self.cache[key]
                return True
            return False

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix`` and return the count"""

        async with self._lock:
            keys = [key for key in self.cache if key.startswith(prefix)]
            for key in keys:
                del self.cache[key]
            return len(keys)

    async def clear_expired(self) -> int:
        """Clear expired entries and return count"""

        async with self._lock:
            now = datetime.utcnow()
            expired_keys = [
                key for key, entry in self.cache.items()
                if now > entry["expires_at"]
            ]

            for key in expired_keys:
                del self.cache[key]

            return len(expired_keys)

    async def sweep_expired(self, interval_seconds: float):
        """Periodically drop expired entries until cancelled"""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                removed = await self.clear_expired()
                if removed:
                    logger.info("Cleared expired cache entries", count=removed)
            except Exception as e:
                logger.error("Cache sweep error", error=str(e))

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        async with self._lock:
            now = datetime.utcnow()
            active_count = sum(
                1 for entry in self.cache.values()
                if now <= entry["expires_at"]
            )

            return {
                "total_keys": len(self.cache),
                "active_keys": active_count,
                "expired_keys": len(self.cache) - active_count
            }

    def _store(self, key: str, value: Any, ttl: float):
        self.cache[key] = {
            "value": value,
            "ttl": ttl,
            "expires_at": datetime.utcnow() + timedelta(seconds=ttl)
        }

    def _touch(self, key: str) -> Optional[Any]:
        entry = self.cache.get(key)
        if entry is None:
            return None

        now = datetime.utcnow()
        if now > entry["expires_at"]:
            del self.cache[key]
            return None

        entry["expires_at"] = now + timedelta(seconds=entry["ttl"])
        return entry["value"]
