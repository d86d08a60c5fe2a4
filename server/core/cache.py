"""Cache service over a Redis or in-memory backing store.

The cache is best-effort: backend failures are logged and surface as a
miss (reads) or a no-op (writes). Only errors raised by caller-supplied
compute functions propagate.
"""

import functools
import hashlib
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from core.config import Settings
from core.logging import get_logger, log_cache_operation
from core.store import KeyValueStore

logger = get_logger(__name__)

Compute = Callable[[], Union[Any, Awaitable[Any]]]


def hash_arguments(args: tuple, kwargs: Dict[str, Any]) -> str:
    """Deterministic hash of call arguments for memoized cache keys.

    Arguments JSON cannot encode are keyed by str(); only the key is
    affected, cached values are never stringified.
    """
    canonical = json.dumps(
        {"args": list(args), "kwargs": kwargs},
        sort_keys=True,
        separators=(",", ":"),
        default=str
    )
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class CacheService:
    """Async key-value cache with TTL, namespaced by a key prefix.

    Values are JSON-serialized before they reach the store, so both
    backends hold the same representation.
    """

    def __init__(self, store: KeyValueStore, settings: Settings,
                 prefix: Optional[str] = None):
        self.store = store
        self.settings = settings
        self.prefix = prefix if prefix is not None else settings.cache_prefix
        self.default_ttl = settings.cache_ttl
        self._stats = {"hits": 0, "misses": 0, "errors": 0}

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def startup(self) -> None:
        """Verify the backing store once the app starts."""
        try:
            await self.store.ping()
            logger.info("Cache service ready", backend=self.store.backend, prefix=self.prefix)
        except Exception as e:
            self._stats["errors"] += 1
            logger.error("Cache backend ping failed", backend=self.store.backend, error=str(e))

    async def shutdown(self) -> None:
        logger.info("Cache service stopped", **self._stats)

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache. Absent, expired and failed reads are misses."""
        try:
            value = await self.store.get(self._key(key))
        except Exception as e:
            self._stats["errors"] += 1
            logger.error("Cache get failed", key=key, error=str(e))
            return None

        if value is None:
            self._stats["misses"] += 1
            log_cache_operation(logger, "get", key, hit=False)
            return None

        try:
            decoded = json.loads(value)
        except ValueError as e:
            self._stats["errors"] += 1
            logger.error("Cache entry is not valid JSON", key=key, error=str(e))
            return None

        self._stats["hits"] += 1
        log_cache_operation(logger, "get", key, hit=True)
        return decoded

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache. Uses the configured default TTL when omitted.

        Values JSON cannot encode (datetime, Decimal, sets) are refused
        rather than stringified, so a later hit returns what a miss did.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            logger.warning("Cache set skipped, non-positive TTL", key=key, ttl=ttl)
            return False

        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            self._stats["errors"] += 1
            logger.error("Cache value is not JSON-serializable", key=key,
                         value_type=type(value).__name__, error=str(e))
            return False

        try:
            await self.store.set(self._key(key), serialized, ttl)
            log_cache_operation(logger, "set", key, ttl=ttl)
            return True
        except Exception as e:
            self._stats["errors"] += 1
            logger.error("Cache set failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete value from cache. Missing keys are not an error."""
        try:
            deleted = await self.store.delete(self._key(key))
            log_cache_operation(logger, "delete", key, deleted=bool(deleted))
            return bool(deleted)
        except Exception as e:
            self._stats["errors"] += 1
            logger.error("Cache delete failed", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        try:
            return await self.store.exists(self._key(key))
        except Exception as e:
            self._stats["errors"] += 1
            logger.error("Cache exists check failed", key=key, error=str(e))
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key in the namespace matching a glob pattern (e.g. user:*)."""
        try:
            keys = await self.store.keys(self._key(pattern))
            deleted = await self.store.delete(*keys) if keys else 0
            log_cache_operation(logger, "invalidate_pattern", pattern, deleted=deleted)
            return deleted
        except Exception as e:
            self._stats["errors"] += 1
            logger.error("Cache invalidate pattern failed", pattern=pattern, error=str(e))
            return 0

    async def clear(self) -> int:
        """Remove all entries in this cache's namespace."""
        deleted = await self.invalidate_pattern("*")
        logger.info("Cache cleared", prefix=self.prefix, deleted=deleted)
        return deleted

    async def get_or_set(self, key: str, compute: Compute, ttl: Optional[int] = None) -> Any:
        """Cache-aside lookup.

        On a miss, compute() (sync or async) is called once and its result
        stored unless it is None. If compute() raises, nothing is stored and
        the exception reaches the caller.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await _resolve(compute())
        if value is not None:
            await self.set(key, value, ttl)
        return value

    def memoize(self, prefix: str, fn: Callable[..., Any],
                ttl: Optional[int] = None) -> Callable[..., Awaitable[Any]]:
        """Wrap fn so results are cached under prefix + hash of its arguments.

        The wrapper is always a coroutine function, whether fn is sync or async.
        """
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            key = f"{prefix}:{hash_arguments(args, kwargs)}"
            return await self.get_or_set(key, lambda: fn(*args, **kwargs), ttl)

        return wrapper

    async def get_stats(self) -> Dict[str, Any]:
        """Backend name, live key count in the namespace, and hit/miss counters."""
        try:
            keys = len(await self.store.keys(self._key("*")))
        except Exception as e:
            logger.error("Cache stats failed", error=str(e))
            keys = None

        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            "backend": self.store.backend,
            "prefix": self.prefix,
            "keys": keys,
            "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
            **self._stats,
        }

    def is_redis_available(self) -> bool:
        """Check if the cache is backed by Redis."""
        return self.store.backend == "redis"
