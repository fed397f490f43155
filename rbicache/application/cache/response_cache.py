"""HTTP response caching with ETag support for FastAPI/Starlette handlers."""

import asyncio
import functools
import json
import math
import re
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Set,
    Tuple,
)

from fastapi.encoders import jsonable_encoder
from fastapi.responses import ORJSONResponse
from starlette.requests import Request
from starlette.responses import Response

from .hashing import hash_string
from .manager import CacheManager
from .models import CachedResponse
from .statistics import CacheStatistics
from ...config import Settings
from ...constants import (
    AUTH_HASH_PREFIX_LENGTH,
    CACHE_HIT,
    CACHE_MISS,
    DEFAULT_CACHEABLE_METHODS,
    DEFAULT_CACHEABLE_STATUS_CODES,
    DEFAULT_CACHE_TTL_SECONDS,
    ETAG_HASH_LENGTH,
    EXCLUDED_CACHED_HEADERS,
    HEADER_CACHE_CONTROL,
    HEADER_ETAG,
    HEADER_X_CACHE,
    HEADER_X_CACHE_AGE,
    NO_CACHE_REQUEST_HEADERS,
    RESPONSE_CACHE_KEY_NAMESPACE,
)
from ...logging import debug, error, info, LogRecord, LogEvent
from ...monitoring import PerformanceMonitor

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_UNSAFE_PATTERN_CHARS = re.compile(r"[^a-zA-Z0-9_*-]")

Handler = Callable[[], Awaitable[Response]]
ErrorCallback = Callable[[BaseException], None]


@dataclass(frozen=True)
class CacheConditions:
    """Request/response properties a cacheable exchange must have.

    ``None`` means "use the default allow-list".
    """

    methods: Optional[Tuple[str, ...]] = None
    status_codes: Optional[Tuple[int, ...]] = None
    content_types: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class CacheConfig:
    """Per-endpoint caching configuration."""

    ttl: Optional[int] = None
    tags: Tuple[str, ...] = ()
    vary_by: Tuple[str, ...] = ()
    conditions: CacheConditions = field(default_factory=CacheConditions)


class CachePresets:
    """Named configurations for common endpoint classes."""

    dashboard = CacheConfig(
        ttl=120,
        tags=("dashboard", "stats"),
        conditions=CacheConditions(methods=("GET",), status_codes=(200,)),
    )
    residents = CacheConfig(
        ttl=60,
        tags=("residents", "data"),
        vary_by=("authorization",),
        conditions=CacheConditions(methods=("GET",), status_codes=(200,)),
    )
    static = CacheConfig(
        ttl=600,
        tags=("static",),
        conditions=CacheConditions(methods=("GET",), status_codes=(200, 304)),
    )
    search = CacheConfig(
        ttl=30,
        tags=("search",),
        vary_by=("authorization",),
        conditions=CacheConditions(methods=("GET",), status_codes=(200,)),
    )


def _cache_control(max_age: int) -> str:
    return f"public, max-age={max(0, max_age)}"


def _parse_body(text: str) -> Any:
    """Return parsed JSON when *text* is JSON, else the raw text."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def _serialize_body(body: Any) -> str:
    if isinstance(body, str):
        return body
    return json.dumps(body, ensure_ascii=False, separators=(",", ":"))


class ResponseCache:
    """
    Caches HTTP responses in a :class:`CacheManager`.

    Keys partition by method, path, query string, configured vary-by headers
    and a fingerprint of the Authorization header. Stored responses carry an
    ETag so that matching ``If-None-Match`` requests get a bodyless 304.
    """

    def __init__(
        self,
        manager: CacheManager,
        settings: Settings,
        monitor: Optional[PerformanceMonitor] = None,
        default_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.manager = manager
        self.settings = settings
        self.monitor = monitor
        self.default_ttl = default_ttl
        self._clock = clock
        self._statistics = CacheStatistics()
        self._not_modified = 0
        self._stale = 0
        self._background_tasks: Set[asyncio.Task] = set()

    def _start_metric(self, name: str) -> Callable[[], Any]:
        if self.monitor is None:
            return lambda: None
        return self.monitor.start_metric(name)

    def _ttl(self, config: Optional[CacheConfig]) -> int:
        if config is not None and config.ttl:
            return config.ttl
        return self.default_ttl

    def generate_cache_key(
        self, request: Request, config: Optional[CacheConfig] = None
    ) -> str:
        """Derive the cache key for *request*.

        The raw Authorization value never appears in the key; only the first
        characters of its fingerprint do.
        """
        query = request.url.query
        key_parts = [
            RESPONSE_CACHE_KEY_NAMESPACE,
            request.method.lower(),
            request.url.path,
            f"?{query}" if query else "",
        ]

        if config is not None:
            for header in config.vary_by:
                if header.lower() == "authorization":
                    continue  # partitioned by the auth fingerprint below
                value = request.headers.get(header)
                if value:
                    key_parts.append(f"{header}:{value}")

        auth_header = request.headers.get("authorization")
        if auth_header:
            token_hash = hash_string(auth_header)
            key_parts.append(f"auth:{token_hash[:AUTH_HASH_PREFIX_LENGTH]}")

        return _UNSAFE_KEY_CHARS.sub("_", "_".join(key_parts))

    @staticmethod
    def generate_etag(body: Any) -> str:
        content = body if isinstance(body, str) else json.dumps(body)
        return f'"{hash_string(content)[:ETAG_HASH_LENGTH]}"'

    def should_cache(
        self,
        request: Request,
        response: Optional[Response] = None,
        config: Optional[CacheConfig] = None,
    ) -> bool:
        """Apply the environment, method, header and status gates."""
        if not self.settings.is_cache_enabled():
            return False

        conditions = config.conditions if config is not None else CacheConditions()

        allowed_methods = conditions.methods or DEFAULT_CACHEABLE_METHODS
        if request.method.upper() not in allowed_methods:
            return False

        for header in NO_CACHE_REQUEST_HEADERS:
            if header in request.headers:
                return False

        if response is not None:
            allowed_status = conditions.status_codes or DEFAULT_CACHEABLE_STATUS_CODES
            if response.status_code not in allowed_status:
                return False
            if conditions.content_types:
                content_type = response.headers.get("content-type", "")
                if not any(content_type.startswith(ct) for ct in conditions.content_types):
                    return False

        return True

    async def get_cached_response(
        self, request: Request, config: Optional[CacheConfig] = None
    ) -> Optional[Response]:
        """Return a cached response for *request*, or ``None`` on a miss.

        Never raises: lookup failures are logged and reported as a miss.
        """
        if not self.should_cache(request, None, config):
            return None

        cache_key = self.generate_cache_key(request, config)
        request_id = getattr(request.state, "request_id", None)
        end_metric = self._start_metric("cache_lookup")

        try:
            raw = await self.manager.get(cache_key)
            end_metric()

            if raw is None:
                self._statistics.record_miss()
                debug(
                    LogRecord(
                        event=LogEvent.CACHE_MISS.value,
                        message="Cache miss",
                        request_id=request_id,
                        data={"cache_key": cache_key, "url": str(request.url)},
                    )
                )
                return None

            cached = CachedResponse.from_dict(raw)
            age = cached.age_seconds(self._clock())
            max_age = self._ttl(config)

            if age > max_age:
                self._statistics.record_miss()
                self._stale += 1
                debug(
                    LogRecord(
                        event=LogEvent.CACHE_MISS.value,
                        message="Cache expired",
                        request_id=request_id,
                        data={"cache_key": cache_key, "age": age, "max_age": max_age},
                    )
                )
                await self.manager.delete(cache_key)
                return None

            self._statistics.record_hit()
            remaining = math.floor(max_age - age)

            if_none_match = request.headers.get("if-none-match")
            if if_none_match and cached.etag and if_none_match == cached.etag:
                self._not_modified += 1
                debug(
                    LogRecord(
                        event=LogEvent.CACHE_HIT.value,
                        message="Cache hit - 304 Not Modified",
                        request_id=request_id,
                        data={"cache_key": cache_key},
                    )
                )
                return Response(
                    status_code=304,
                    headers={
                        HEADER_ETAG: cached.etag,
                        HEADER_CACHE_CONTROL: _cache_control(remaining),
                        HEADER_X_CACHE: CACHE_HIT,
                    },
                )

            debug(
                LogRecord(
                    event=LogEvent.CACHE_HIT.value,
                    message="Cache hit",
                    request_id=request_id,
                    data={"cache_key": cache_key, "age": round(age)},
                )
            )
            headers = {
                name: value
                for name, value in cached.headers.items()
                if name.lower() != "content-length"
            }
            response = Response(
                content=_serialize_body(cached.body),
                status_code=cached.status,
                headers=headers,
            )
            response.headers[HEADER_X_CACHE] = CACHE_HIT
            response.headers[HEADER_X_CACHE_AGE] = str(round(age))
            response.headers[HEADER_CACHE_CONTROL] = _cache_control(remaining)
            if cached.etag:
                response.headers[HEADER_ETAG] = cached.etag
            return response

        except Exception as e:
            end_metric()
            error(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache lookup error",
                    request_id=request_id,
                    data={"cache_key": cache_key},
                ),
                exc=e,
            )
            return None

    def _prepare(
        self,
        request: Request,
        response: Response,
        config: Optional[CacheConfig],
    ) -> Optional[Tuple[str, CachedResponse, int]]:
        """Snapshot *response* for storage and mark it as a cache miss.

        The caller's response object keeps its body; only headers are added.
        Returns ``None`` when the exchange must not be cached.
        """
        if not self.should_cache(request, response, config):
            return None

        body_bytes = getattr(response, "body", None)
        if not isinstance(body_bytes, (bytes, bytearray)):
            debug(
                LogRecord(
                    event=LogEvent.CACHE_EVENT.value,
                    message="Streaming response not cached",
                    data={"path": request.url.path},
                )
            )
            return None

        try:
            body = bytes(body_bytes).decode("utf-8")
        except UnicodeDecodeError:
            debug(
                LogRecord(
                    event=LogEvent.CACHE_EVENT.value,
                    message="Non-text response not cached",
                    data={"path": request.url.path},
                )
            )
            return None

        cache_key = self.generate_cache_key(request, config)
        etag = self.generate_etag(body)
        ttl = self._ttl(config)

        headers = {
            name: value
            for name, value in response.headers.items()
            if name.lower() not in EXCLUDED_CACHED_HEADERS
        }
        cached = CachedResponse(
            status=response.status_code,
            headers=headers,
            body=_parse_body(body),
            timestamp=self._clock(),
            etag=etag,
        )

        response.headers[HEADER_X_CACHE] = CACHE_MISS
        response.headers[HEADER_ETAG] = etag
        response.headers[HEADER_CACHE_CONTROL] = _cache_control(ttl)
        return cache_key, cached, ttl

    async def _store(
        self,
        cache_key: str,
        cached: CachedResponse,
        ttl: int,
        request_id: Optional[str] = None,
    ) -> bool:
        end_metric = self._start_metric("cache_store")
        try:
            stored = await self.manager.set(cache_key, cached.to_dict(), ttl)
        finally:
            end_metric()
        if stored:
            debug(
                LogRecord(
                    event=LogEvent.CACHE_STORE.value,
                    message="Response cached",
                    request_id=request_id,
                    data={
                        "cache_key": cache_key,
                        "ttl": ttl,
                        "status": cached.status,
                    },
                )
            )
        return stored

    async def cache_response(
        self,
        request: Request,
        response: Response,
        config: Optional[CacheConfig] = None,
    ) -> bool:
        """Store *response* for *request* and wait for the write to finish.

        Returns ``False`` when the exchange is not cacheable or the write
        failed; never raises.
        """
        request_id = getattr(request.state, "request_id", None)
        try:
            prepared = self._prepare(request, response, config)
            if prepared is None:
                return False
            return await self._store(*prepared, request_id=request_id)
        except Exception as e:
            error(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache storage error",
                    request_id=request_id,
                    data={"path": request.url.path},
                ),
                exc=e,
            )
            return False

    def schedule_cache_response(
        self,
        request: Request,
        response: Response,
        config: Optional[CacheConfig] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> Optional[asyncio.Task]:
        """Store *response* in a detached task so the caller is not delayed.

        Headers are applied to *response* before this returns. Failures of
        the background write are passed to *on_error*.
        """
        request_id = getattr(request.state, "request_id", None)
        report = on_error or functools.partial(
            self._log_background_failure, request_id=request_id
        )
        try:
            prepared = self._prepare(request, response, config)
        except Exception as e:
            report(e)
            return None
        if prepared is None:
            return None

        task = asyncio.create_task(self._store(*prepared, request_id=request_id))
        self._background_tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._background_tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                report(exc)

        task.add_done_callback(_done)
        return task

    @staticmethod
    def _log_background_failure(
        exc: BaseException, request_id: Optional[str] = None
    ) -> None:
        error(
            LogRecord(
                event=LogEvent.CACHE_BACKEND_ERROR.value,
                message="Background cache storage failed",
                request_id=request_id,
            ),
            exc=exc if isinstance(exc, Exception) else None,
        )

    async def drain(self) -> None:
        """Wait for all pending background writes."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def invalidate(
        self, pattern: str, tags: Optional[Tuple[str, ...]] = None
    ) -> int:
        """Delete cached responses whose key contains *pattern*.

        Tag-based invalidation is not implemented; tags are only logged.
        """
        safe_pattern = _UNSAFE_PATTERN_CHARS.sub("_", pattern)
        info(
            LogRecord(
                event=LogEvent.CACHE_INVALIDATION.value,
                message="Invalidating cache",
                data={"pattern": pattern, "tags": list(tags or ())},
            )
        )
        count = await self.manager.invalidate_pattern(
            f"{RESPONSE_CACHE_KEY_NAMESPACE}_*{safe_pattern}*"
        )

        if tags:
            debug(
                LogRecord(
                    event=LogEvent.CACHE_INVALIDATION.value,
                    message="Tag-based invalidation not implemented",
                    data={"tags": list(tags)},
                )
            )
        return count

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self.manager.get_stats()
        hits = stats.get("hits", 0)
        misses = stats.get("misses", 0)
        stats["hit_rate"] = (
            f"{hits / (hits + misses) * 100:.2f}%" if hits > 0 else "0%"
        )
        stats["responses"] = {
            "hits": self._statistics.hits,
            "misses": self._statistics.misses,
            "not_modified": self._not_modified,
            "stale": self._stale,
            "pending_writes": len(self._background_tasks),
        }
        return stats


def with_response_cache(
    response_cache: ResponseCache, config: Optional[CacheConfig] = None
) -> Callable[[Request, Handler], Awaitable[Response]]:
    """Wrap route handling with a cached read and a background cache write.

    Concurrent misses for the same key each run the handler.
    """

    async def middleware(request: Request, handler: Handler) -> Response:
        cached = await response_cache.get_cached_response(request, config)
        if cached is not None:
            return cached

        response = await handler()
        response_cache.schedule_cache_response(request, response, config)
        return response

    return middleware


def cached_endpoint(config: Optional[CacheConfig] = None):
    """Decorator applying :func:`with_response_cache` to a FastAPI endpoint.

    The endpoint must declare a ``request: Request`` parameter; the cache is
    taken from ``request.app.state.response_cache``. Non-``Response`` return
    values are rendered as JSON before caching.
    """

    def decorator(endpoint: Callable[..., Awaitable[Any]]):
        @functools.wraps(endpoint)
        async def wrapper(*args: Any, **kwargs: Any) -> Response:
            request = kwargs.get("request")
            if request is None:
                request = next(a for a in args if isinstance(a, Request))

            async def handler() -> Response:
                result = await endpoint(*args, **kwargs)
                if isinstance(result, Response):
                    return result
                return ORJSONResponse(content=jsonable_encoder(result))

            cache = with_response_cache(request.app.state.response_cache, config)
            return await cache(request, handler)

        return wrapper

    return decorator
