"""Rate limiting middleware for the HTTP interface."""

from __future__ import annotations

from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp
from fastapi import Request

from .errors import log_and_return_error_response
from ...application.rate_limiter import RateLimiter, client_identifier
from ...constants import DEFAULT_RETRY_AFTER_SECONDS, ERROR_RATE_LIMIT_EXCEEDED
from ...domain.models import ErrorCode


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies one :class:`RateLimiter` rule to every request.

    Refused requests get a 429 JSON error with ``Retry-After`` and
    ``X-RateLimit-*`` headers; allowed requests get the ``X-RateLimit-*``
    headers on their response.
    """

    def __init__(
        self,
        app: ASGIApp,
        rate_limiter: RateLimiter,
        rule_key: str = "api",
        exempt_paths: Optional[Iterable[str]] = None,
    ) -> None:
        """Initializes rate limiting middleware.

        Args:
            app: Downstream ASGI application instance
            rate_limiter: Shared limiter holding the request windows
            rule_key: Name of the rule applied to every request
            exempt_paths: Paths never counted (e.g. health checks)
        """
        super().__init__(app)
        self._limiter = rate_limiter
        self._rule_key = rule_key
        self._rule = rate_limiter.get_rule(rule_key)
        self._exempt_paths = frozenset(exempt_paths or ())

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Apply rate limiting and forward the request if allowed."""
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        identifier = client_identifier(request)
        result = await self._limiter.check(identifier, self._rule_key)
        limit_headers = {
            "X-RateLimit-Limit": str(self._rule.max_requests),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(int(result.reset_time)),
        }

        if not result.allowed:
            retry_after = result.retry_after or DEFAULT_RETRY_AFTER_SECONDS
            return await log_and_return_error_response(
                request,
                429,
                ErrorCode.RATE_LIMIT_EXCEEDED,
                ERROR_RATE_LIMIT_EXCEEDED.format(retry_after=retry_after),
                details={
                    "retry_after": retry_after,
                    "limit": self._rule.max_requests,
                    "window": self._rule.window_seconds,
                },
                headers={"Retry-After": str(retry_after), **limit_headers},
            )

        response = await call_next(request)
        if response.status_code < 400:
            await self._limiter.record_success(identifier, self._rule_key)
        else:
            await self._limiter.record_failure(identifier, self._rule_key)

        for name, value in limit_headers.items():
            response.headers.setdefault(name, value)
        return response
