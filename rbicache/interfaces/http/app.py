from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...config import Settings
from ...constants import DEFAULT_RETRY_AFTER_SECONDS, ERROR_INTERNAL
from ...domain.exceptions import CacheError, RateLimitExceededError
from ...domain.models import ErrorCode
from ...logging import (
    init_logging,
    info as log_info,
    error as log_error,
    LogRecord,
    LogEvent,
)
from ...monitoring import PerformanceMonitor
from ...application.cache import (
    CacheManager,
    ResponseCache,
    create_cache_client,
)
from ...application.rate_limiter import RateLimiter
from .errors import STATUS_CODE_ERROR_MAP, log_and_return_error_response
from .guardrails import RateLimitMiddleware
from .middleware import logging_middleware
from .routes.health import router as health_router
from .routes.cache import admin_router as cache_admin_router
from .routes.cache import router as cache_router


def create_app(settings: Settings) -> FastAPI:
    """Creates and configures the FastAPI application instance.

    Builds the cache client, cache manager, response cache, rate limiter and
    performance monitor once and stores them on ``app.state``; registers
    middleware, routes and exception handlers.

    Args:
        settings: Configuration settings object

    Returns:
        Fully configured FastAPI application instance
    """
    init_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_info(
            LogRecord(
                event=LogEvent.STARTUP.value,
                message=f"{settings.app_name} {settings.app_version} starting",
                data={
                    "environment": settings.app_env,
                    "cache_enabled": settings.is_cache_enabled(),
                    "cache_backend": app.state.cache_manager.client.name,
                    "rate_limit_enabled": settings.rate_limit_enabled,
                },
            )
        )
        app.state.rate_limiter.start_cleanup_task()

        try:
            yield
        finally:
            log_info(
                LogRecord(
                    event=LogEvent.SHUTDOWN.value,
                    message="Initiating application shutdown",
                )
            )
            try:
                try:
                    await app.state.rate_limiter.stop_cleanup_task()
                except Exception as e:
                    log_error(
                        LogRecord(
                            event=LogEvent.SHUTDOWN.value,
                            message="Error stopping rate limit cleanup",
                        ),
                        exc=e,
                    )

                try:
                    await app.state.response_cache.drain()
                except Exception as e:
                    log_error(
                        LogRecord(
                            event=LogEvent.SHUTDOWN.value,
                            message="Error flushing pending cache writes",
                        ),
                        exc=e,
                    )
            finally:
                try:
                    await app.state.cache_manager.client.close()
                except Exception as e:
                    log_error(
                        LogRecord(
                            event=LogEvent.SHUTDOWN.value,
                            message="Failed to close cache backend",
                        ),
                        exc=e,
                    )

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url=None,
        redoc_url=None,
        description="HTTP response caching and rate limiting service.",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )

    monitor = PerformanceMonitor()
    cache_manager = CacheManager(
        create_cache_client(settings),
        prefix=settings.cache_key_prefix,
        default_ttl=settings.cache_default_ttl,
    )
    app.state.settings = settings
    app.state.performance_monitor = monitor
    app.state.cache_manager = cache_manager
    app.state.response_cache = ResponseCache(
        cache_manager,
        settings,
        monitor=monitor,
        default_ttl=settings.cache_default_ttl,
    )
    app.state.rate_limiter = RateLimiter(
        cleanup_interval_seconds=settings.rate_limit_cleanup_interval_seconds
    )

    # Middleware added last runs first: rate limiting, CORS, then request logging.
    if settings.rate_limit_enabled:
        log_info(
            LogRecord(
                event=LogEvent.STARTUP.value,
                message=f"Rate limiting enabled with rule '{settings.rate_limit_rule}'",
            )
        )
        app.add_middleware(
            RateLimitMiddleware,
            rate_limiter=app.state.rate_limiter,
            rule_key=settings.rate_limit_rule,
            exempt_paths=["/"],
        )

    if settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
            expose_headers=["ETag", "X-Cache", "X-Cache-Age", "X-Request-ID"],
            allow_credentials=False,
            max_age=600,
        )

    app.middleware("http")(logging_middleware)

    app.include_router(health_router, tags=["Health"])
    app.include_router(cache_router, tags=["Cache"])
    if settings.is_cache_admin_enabled():
        app.include_router(cache_admin_router, tags=["Cache"])

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await log_and_return_error_response(
            request,
            exc.status_code,
            STATUS_CODE_ERROR_MAP.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            str(exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return await log_and_return_error_response(
            request,
            422,
            ErrorCode.VALIDATION_ERROR,
            "Validation error",
            details={
                "errors": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
                    for e in exc.errors()
                ]
            },
        )

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_error_handler(request: Request, exc: RateLimitExceededError):
        retry_after = exc.retry_after or DEFAULT_RETRY_AFTER_SECONDS
        return await log_and_return_error_response(
            request,
            429,
            ErrorCode.RATE_LIMIT_EXCEEDED,
            exc.message,
            details={"retry_after": retry_after, "rule": exc.rule_key},
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(CacheError)
    async def cache_error_handler(request: Request, exc: CacheError):
        return await log_and_return_error_response(
            request,
            503,
            ErrorCode.CACHE_ERROR,
            exc.message,
            caught_exception=exc,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        return await log_and_return_error_response(
            request,
            500,
            ErrorCode.INTERNAL_ERROR,
            ERROR_INTERNAL,
            caught_exception=exc,
        )

    return app
