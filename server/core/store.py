"""Backing stores for the cache and session services.

Two interchangeable implementations of one async key-value interface:
- RedisStore: shared across processes (production)
- InMemoryStore: process-local dict (development, or Redis fallback)

The backend is chosen once by open_store() at startup. Stores raise on
failure; the services layered on top decide how failures degrade.
"""

import time
from abc import ABC, abstractmethod
from fnmatch import fnmatchcase
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

from core.config import Settings
from core.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Async string key-value store with per-key expiration."""

    backend: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a value, None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        """Store a value. ttl=None means the key never expires."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        """List live keys matching a glob pattern."""

    @abstractmethod
    async def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime in seconds, None if absent or non-expiring."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the store is reachable."""

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def cleanup_expired(self) -> int:
        """Purge expired keys. Stores with native expiry have nothing to do."""
        return 0

    async def size(self) -> int:
        return len(await self.keys("*"))

    async def close(self) -> None:
        pass


class InMemoryStore(KeyValueStore):
    """Process-local store with lazy expiration on read.

    Internal format: key -> (value, expires_at); expires_at None = no expiry.
    """

    backend = "memory"

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str, now: Optional[float] = None) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= (now or time.time()):
            self._data.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        expires_at = time.time() + ttl if ttl is not None else None
        self._data[key] = (value, expires_at)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live(key) is not None:
                deleted += 1
            self._data.pop(key, None)
        return deleted

    async def keys(self, pattern: str = "*") -> List[str]:
        now = time.time()
        return [
            key for key in list(self._data)
            if fnmatchcase(key, pattern) and self._live(key, now) is not None
        ]

    async def ttl(self, key: str) -> Optional[float]:
        if self._live(key) is None:
            return None
        expires_at = self._data[key][1]
        if expires_at is None:
            return None
        return max(expires_at - time.time(), 0.0)

    async def ping(self) -> bool:
        return True

    async def cleanup_expired(self) -> int:
        now = time.time()
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
        for key in expired:
            self._data.pop(key, None)
        return len(expired)

    async def size(self) -> int:
        return len(self._data)

    async def close(self) -> None:
        self._data.clear()


class RedisStore(KeyValueStore):
    """Redis-backed store using redis.asyncio."""

    backend = "redis"

    def __init__(self, client: "redis.Redis"):
        self.redis = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisStore":
        client = redis.from_url(
            settings.redis_dsn,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_timeout,
            retry_on_timeout=True
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(key)

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        if ttl is None:
            await self.redis.set(key, value)
        else:
            # PX keeps sub-second precision for remaining-TTL rewrites
            await self.redis.set(key, value, px=max(int(ttl * 1000), 1))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.redis.delete(*keys))

    async def keys(self, pattern: str = "*") -> List[str]:
        return [key async for key in self.redis.scan_iter(match=pattern, count=500)]

    async def ttl(self, key: str) -> Optional[float]:
        remaining_ms = await self.redis.pttl(key)
        # -2: key absent, -1: no expiry
        if remaining_ms is None or remaining_ms < 0:
            return None
        return remaining_ms / 1000.0

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def size(self) -> int:
        return int(await self.redis.dbsize())

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info("Redis connections closed")


async def open_store(settings: Settings) -> KeyValueStore:
    """Select the backing store once for the lifetime of the process.

    Redis is tried only when enabled and configured. Any connection error
    is logged and the process falls back to an in-memory store for good.
    """
    if not settings.use_redis:
        logger.info("Using in-memory store", redis_enabled=settings.redis_enabled)
        return InMemoryStore()

    store = RedisStore.from_settings(settings)
    try:
        await store.ping()
    except Exception as e:
        logger.warning("Redis connection failed, falling back to in-memory store", error=str(e))
        try:
            await store.close()
        except Exception as close_error:
            logger.debug("Redis close after failed ping", error=str(close_error))
        return InMemoryStore()

    logger.info("Redis store initialized", host=store.redis.connection_pool.connection_kwargs.get("host"))
    return store
