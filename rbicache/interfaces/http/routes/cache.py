"""Monitoring and cache administration endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse

from ....domain.models import (
    CacheClearResponse,
    CacheInvalidateRequest,
    CacheInvalidateResponse,
)

router = APIRouter()
admin_router = APIRouter()


@router.get("/api/metrics")
async def get_metrics(request: Request) -> ORJSONResponse:
    """Get current performance metrics including cache statistics."""
    performance_metrics = await request.app.state.performance_monitor.get_metrics()
    cache_stats = await request.app.state.response_cache.get_stats()
    return ORJSONResponse(
        content={"performance": performance_metrics, "cache": cache_stats}
    )


@router.get("/api/cache/stats")
async def get_cache_stats(request: Request) -> ORJSONResponse:
    return ORJSONResponse(content=await request.app.state.response_cache.get_stats())


@admin_router.post("/api/cache/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_cache(
    request: Request, body: CacheInvalidateRequest
) -> CacheInvalidateResponse:
    """Delete cached responses whose key contains ``pattern``."""
    deleted = await request.app.state.response_cache.invalidate(
        body.pattern, tuple(body.tags)
    )
    return CacheInvalidateResponse(pattern=body.pattern, tags=body.tags, deleted=deleted)


@admin_router.post("/api/cache/clear", response_model=CacheClearResponse)
async def clear_cache(request: Request) -> CacheClearResponse:
    """Remove every cache entry and reset backend statistics."""
    cleared = await request.app.state.cache_manager.clear()
    return CacheClearResponse(cleared=cleared)


@router.post("/api/metrics/reset")
async def reset_metrics(request: Request) -> ORJSONResponse:
    """Reset performance metrics."""
    await request.app.state.performance_monitor.reset_metrics()
    return ORJSONResponse(content={"status": "metrics_reset"})
