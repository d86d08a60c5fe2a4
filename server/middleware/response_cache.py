"""Per-route caching of JSON responses through the cache service.

Key schema (inside the cache namespace):
    api:{prefix}:{path}?{query}             shared responses
    api:{prefix}:user={id}:{path}?{query}   per_user responses

Usage:
    @router.get("/reports")
    @cache_response("reports", ttl=60)
    async def reports(request: Request): ...

The endpoint must accept a ``request: Request`` parameter. Only successful
GET responses are stored: an HTTPException or a Response object returned
by the endpoint bypasses the cache. Mutating routes call
invalidate_responses() with the same prefix.
"""

import functools
from typing import Any, Callable, Optional

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder

from core.container import container
from core.logging import get_logger

logger = get_logger(__name__)


def response_key(prefix: str, request: Request, per_user: bool = False) -> str:
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    if per_user:
        session = getattr(request.state, "session", None)
        url = f"user={session.user_id if session else '-'}:{url}"
    return f"api:{prefix}:{url}"


def cache_response(prefix: str, ttl: Optional[int] = None, per_user: bool = False):
    """Decorate a GET endpoint so its JSON body is served from the cache.

    Args:
        prefix: Key group shared with invalidate_responses()
        ttl: Seconds to keep a response; RESPONSE_CACHE_TTL when omitted
        per_user: Key responses by the caller's session user
    """
    def decorator(fn: Callable[..., Any]):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            request: Request = kwargs["request"]
            if request.method != "GET":
                return await fn(*args, **kwargs)

            cache = container.cache()
            key = response_key(prefix, request, per_user)
            cached = await cache.get(key)
            if cached is not None:
                return cached

            result = await fn(*args, **kwargs)
            if isinstance(result, Response):
                return result

            body = jsonable_encoder(result)
            await cache.set(key, body, ttl if ttl is not None else cache.settings.response_cache_ttl)
            return body

        return wrapper

    return decorator


async def invalidate_responses(*prefixes: str) -> int:
    """Drop every cached response stored under the given prefixes."""
    cache = container.cache()
    deleted = 0
    for prefix in prefixes:
        deleted += await cache.invalidate_pattern(f"api:{prefix}:*")
    if deleted:
        logger.debug("Cached responses invalidated", prefixes=list(prefixes), deleted=deleted)
    return deleted
