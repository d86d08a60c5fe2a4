"""Cache administration routes. Admin sessions only."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.cache import CacheService
from core.container import container
from core.logging import get_logger
from middleware.session import require_admin

logger = get_logger(__name__)
router = APIRouter(prefix="/api/cache", tags=["cache"], dependencies=[Depends(require_admin)])


class InvalidateRequest(BaseModel):
    pattern: str = Field(min_length=1, examples=["user:*"])


@router.get("/stats")
async def cache_stats(cache: CacheService = Depends(lambda: container.cache())):
    return await cache.get_stats()


@router.post("/invalidate")
async def invalidate(
    request: InvalidateRequest,
    cache: CacheService = Depends(lambda: container.cache())
):
    """Drop every cached key matching a glob pattern."""
    deleted = await cache.invalidate_pattern(request.pattern)
    logger.info("Cache invalidated via API", pattern=request.pattern, deleted=deleted)
    return {"success": True, "deleted": deleted}


@router.delete("")
async def clear_cache(cache: CacheService = Depends(lambda: container.cache())):
    deleted = await cache.clear()
    return {"success": True, "deleted": deleted}


@router.delete("/{key:path}")
async def delete_key(key: str, cache: CacheService = Depends(lambda: container.cache())):
    return {"success": await cache.delete(key)}
