import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from fastapi import Request
from fastapi.responses import ORJSONResponse

from ...domain.models import ErrorCode, ErrorDetail, ErrorResponse
from ...logging import error, warning, LogRecord, LogEvent


STATUS_CODE_ERROR_MAP: Dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
    500: ErrorCode.INTERNAL_ERROR,
    503: ErrorCode.CACHE_ERROR,
}


def build_error_response(
    request: Request,
    status_code: int,
    error_code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> ORJSONResponse:
    """Creates the JSON error envelope shared by every error path."""
    body = ErrorResponse(
        error=ErrorDetail(code=error_code, message=message, details=details),
        timestamp=datetime.now(timezone.utc).isoformat(),
        path=request.url.path,
    )
    return ORJSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=dict(headers) if headers else None,
    )


async def log_and_return_error_response(
    request: Request,
    status_code: int,
    error_code: ErrorCode,
    error_message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    caught_exception: Optional[Exception] = None,
) -> ORJSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    start_time_mono = getattr(request.state, "start_time_monotonic", time.monotonic())
    duration_ms = (time.monotonic() - start_time_mono) * 1000

    log_data = {
        "status_code": status_code,
        "duration_ms": duration_ms,
        "error_code": error_code.value,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else "unknown",
    }
    record = LogRecord(
        event=LogEvent.REQUEST_FAILURE.value,
        message=f"Request failed: {error_message}",
        request_id=request_id,
        data=log_data,
    )
    if status_code >= 500:
        error(record, exc=caught_exception)
    else:
        warning(record, exc=caught_exception)

    return build_error_response(
        request, status_code, error_code, error_message, details, headers
    )
