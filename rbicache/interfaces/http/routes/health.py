from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse
from datetime import datetime, timezone

from ....logging import debug, LogRecord, LogEvent

router = APIRouter()


@router.get("/", include_in_schema=False)
async def root_health_check(request: Request) -> ORJSONResponse:
    """Check basic API health and availability.

    Returns:
        ORJSONResponse: status 'ok', the current UTC timestamp, the runtime
        environment and whether response caching is active.
    """
    settings = request.app.state.settings
    debug(
        LogRecord(
            event=LogEvent.HEALTH_CHECK.value,
            message="Health check",
            request_id=getattr(request.state, "request_id", None),
        )
    )
    return ORJSONResponse(
        {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.app_env,
            "version": settings.app_version,
            "cache_enabled": settings.is_cache_enabled(),
            "cache_backend": request.app.state.cache_manager.client.name,
        }
    )
