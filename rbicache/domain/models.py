from enum import StrEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorCode(StrEnum):
    """Machine-readable error codes carried in error response bodies.

    Attributes:
        VALIDATION_ERROR: Request body or parameters were invalid
        NOT_FOUND: Route or resource not found
        METHOD_NOT_ALLOWED: HTTP method not supported by the route
        RATE_LIMIT_EXCEEDED: Client exceeded a rate limiting rule
        CACHE_ERROR: Cache backend failure surfaced to an admin endpoint
        INTERNAL_ERROR: Unexpected server-side failure
    """

    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CACHE_ERROR = "cache_error"
    INTERNAL_ERROR = "internal_error"


class ErrorDetail(BaseModel):
    """Error information returned to clients.

    Attributes:
        code (ErrorCode): Categorized error code
        message (str): Human-readable error description
        details (Optional[Dict[str, Any]]): Extra structured context
    """

    code: ErrorCode
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Envelope for every JSON error response.

    Attributes:
        error (ErrorDetail): Detailed error information
        timestamp (str): ISO-8601 UTC time the error was produced
        path (str): Request path that failed
    """

    error: ErrorDetail
    timestamp: str
    path: str


class CacheInvalidateRequest(BaseModel):
    """Body of ``POST /api/cache/invalidate``."""

    pattern: str = Field(default="", max_length=512)
    tags: List[str] = Field(default_factory=list)


class CacheInvalidateResponse(BaseModel):
    pattern: str
    tags: List[str]
    deleted: int


class CacheClearResponse(BaseModel):
    cleared: bool
