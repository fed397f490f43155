"""Common FastAPI middleware utilities for the HTTP interface."""

import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import Response

from ...logging import debug, info, LogRecord, LogEvent


async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Attach request ID and timing headers, and feed the performance monitor.

    The request ID is reused from an incoming ``X-Request-ID`` header when
    present and stored on ``request.state`` for downstream handlers.
    """
    if not hasattr(request.state, "request_id"):
        request.state.request_id = request.headers.get("x-request-id") or str(
            uuid.uuid4()
        )
    if not hasattr(request.state, "start_time_monotonic"):
        request.state.start_time_monotonic = time.monotonic()
    request_id = request.state.request_id

    monitor = getattr(request.app.state, "performance_monitor", None)
    if monitor is not None:
        await monitor.start_request(request_id)

    debug(
        LogRecord(
            event=LogEvent.REQUEST_START.value,
            message=f"{request.method} {request.url.path}",
            request_id=request_id,
        )
    )

    success = False
    try:
        response = await call_next(request)
        success = response.status_code < 500
    finally:
        if monitor is not None:
            await monitor.end_request(request_id, success=success)

    response.headers["X-Request-ID"] = request_id
    duration_ms = (time.monotonic() - request.state.start_time_monotonic) * 1000
    response.headers["X-Response-Time-ms"] = str(duration_ms)

    info(
        LogRecord(
            event=LogEvent.REQUEST_COMPLETED.value,
            message=f"{request.method} {request.url.path} {response.status_code}",
            request_id=request_id,
            data={
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "x_cache": response.headers.get("x-cache"),
            },
        )
    )
    return response
