"""Health check utilities for the /health endpoint."""
import time
from typing import Dict, Any, TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from core.config import Settings
    from core.cache import CacheService
    from core.cleanup import CleanupService
    from services.sessions import SessionStore

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


def get_memory_mb() -> float:
    """Get current process memory usage in MB."""
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except psutil.Error:
        return 0.0


async def check_cache(cache: "CacheService") -> bool:
    """Round-trip a marker value through the cache."""
    test_key = "_health_check"
    await cache.set(test_key, "ok", ttl=10)
    result = await cache.get(test_key)
    await cache.delete(test_key)
    return result == "ok"


async def get_health_status(
    cache: "CacheService",
    sessions: "SessionStore",
    cleanup: "CleanupService",
    settings: "Settings"
) -> Dict[str, Any]:
    """Get health status: backend, cache round-trip, live sessions, uptime."""
    cache_healthy = await check_cache(cache)

    return {
        "status": "healthy" if cache_healthy else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        "memory_mb": round(get_memory_mb(), 1),
        "backend": cache.store.backend,
        "checks": {
            "cache": cache_healthy,
        },
        "sessions": {
            "active": await sessions.count(),
        },
        "features": {
            "redis": settings.redis_enabled,
            "redis_connected": cache.is_redis_available(),
            "cleanup": cleanup.running,
        },
    }
