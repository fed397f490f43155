"""Tests for HTTP response caching."""

import json
import re
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.responses import ORJSONResponse, PlainTextResponse, StreamingResponse

from rbicache.application.cache.client import MemoryCacheClient
from rbicache.application.cache.manager import CacheManager
from rbicache.application.cache.response_cache import (
    CacheConditions,
    CacheConfig,
    CachePresets,
    ResponseCache,
    with_response_cache,
)
from rbicache.config import Settings
from rbicache.monitoring import PerformanceMonitor


@pytest.fixture
def production_settings() -> Settings:
    return Settings(APP_ENV="production")


@pytest.fixture
def manager(clock) -> CacheManager:
    return CacheManager(MemoryCacheClient(max_size=100, clock=clock), prefix="rbi:")


@pytest.fixture
def monitor() -> PerformanceMonitor:
    return PerformanceMonitor()


@pytest.fixture
def response_cache(manager, production_settings, monitor, clock) -> ResponseCache:
    return ResponseCache(manager, production_settings, monitor=monitor, clock=clock)


def residents_response() -> ORJSONResponse:
    return ORJSONResponse({"items": [{"id": 1, "name": "Juan"}], "total": 1})


class TestCacheKey:
    def test_key_is_sanitized(self, response_cache, request_factory):
        request = request_factory(path="/api/residents", query="page=2")
        key = response_cache.generate_cache_key(request)
        assert key == "response_get__api_residents__page_2"

    def test_key_without_query(self, response_cache, request_factory):
        key = response_cache.generate_cache_key(request_factory(path="/api/dashboard"))
        assert key == "response_get__api_dashboard_"

    def test_authorization_is_fingerprinted_not_embedded(
        self, response_cache, request_factory
    ):
        request = request_factory(headers={"Authorization": "Bearer secret-token"})

        key = response_cache.generate_cache_key(request, CachePresets.residents)

        assert "secret" not in key
        assert "Bearer" not in key
        assert re.search(r"_auth_[0-9a-f]{8}$", key)

    def test_distinct_authorization_gives_distinct_keys(
        self, response_cache, request_factory
    ):
        config = CacheConfig(vary_by=("authorization",))
        key_a = response_cache.generate_cache_key(
            request_factory(headers={"Authorization": "Bearer token-a"}), config
        )
        key_b = response_cache.generate_cache_key(
            request_factory(headers={"Authorization": "Bearer token-b"}), config
        )
        key_a_again = response_cache.generate_cache_key(
            request_factory(headers={"Authorization": "Bearer token-a"}), config
        )

        assert key_a != key_b
        assert key_a == key_a_again

    def test_vary_by_header_value_included(self, response_cache, request_factory):
        config = CacheConfig(vary_by=("accept-language",))
        key_en = response_cache.generate_cache_key(
            request_factory(headers={"Accept-Language": "en"}), config
        )
        key_fil = response_cache.generate_cache_key(
            request_factory(headers={"Accept-Language": "fil"}), config
        )

        assert key_en.endswith("_accept-language_en")
        assert key_en != key_fil

    def test_etag_is_quoted_fingerprint(self):
        etag = ResponseCache.generate_etag('{"a":1}')
        assert re.fullmatch(r'"[0-9a-f]{16}"', etag)
        assert etag == ResponseCache.generate_etag('{"a":1}')
        assert etag != ResponseCache.generate_etag('{"a":2}')


class TestShouldCache:
    def test_get_is_cacheable_in_production(self, response_cache, request_factory):
        assert response_cache.should_cache(request_factory()) is True

    def test_post_is_not_cacheable_by_default(self, response_cache, request_factory):
        assert response_cache.should_cache(request_factory(method="POST")) is False

    def test_no_cache_header_bypasses(self, response_cache, request_factory):
        request = request_factory(headers={"X-No-Cache": "1"})
        assert response_cache.should_cache(request) is False

    def test_uncacheable_status(self, response_cache, request_factory):
        response = ORJSONResponse({"error": "boom"}, status_code=500)
        assert response_cache.should_cache(request_factory(), response) is False

    def test_config_restricts_methods(self, response_cache, request_factory):
        config = CacheConfig(conditions=CacheConditions(methods=("GET",)))
        assert response_cache.should_cache(request_factory(method="HEAD"), None, config) is False

    def test_content_type_condition(self, response_cache, request_factory):
        config = CacheConfig(
            conditions=CacheConditions(content_types=("application/json",))
        )
        assert response_cache.should_cache(
            request_factory(), residents_response(), config
        )
        assert not response_cache.should_cache(
            request_factory(), PlainTextResponse("hi"), config
        )

    def test_disabled_in_development(self, manager, monitor, request_factory):
        cache = ResponseCache(manager, Settings(APP_ENV="development"), monitor)
        assert cache.should_cache(request_factory()) is False

    def test_enabled_in_development_with_flag(self, manager, monitor, request_factory):
        settings = Settings(APP_ENV="development", ENABLE_DEV_CACHE=True)
        cache = ResponseCache(manager, settings, monitor)
        assert cache.should_cache(request_factory()) is True


class TestCacheRoundTrip:
    @pytest.mark.anyio
    async def test_miss_then_hit(self, response_cache, request_factory, clock):
        config = CachePresets.residents
        request = request_factory()
        assert await response_cache.get_cached_response(request, config) is None

        response = residents_response()
        assert await response_cache.cache_response(request, response, config) is True
        assert response.headers["X-Cache"] == "MISS"
        assert response.headers["Cache-Control"] == "public, max-age=60"
        etag = response.headers["ETag"]

        clock.advance(10)
        cached = await response_cache.get_cached_response(request_factory(), config)

        assert cached is not None
        assert cached.status_code == 200
        assert json.loads(cached.body) == {
            "items": [{"id": 1, "name": "Juan"}],
            "total": 1,
        }
        assert cached.headers["X-Cache"] == "HIT"
        assert cached.headers["X-Cache-Age"] == "10"
        assert cached.headers["Cache-Control"] == "public, max-age=50"
        assert cached.headers["ETag"] == etag
        assert cached.headers["content-type"] == "application/json"

    @pytest.mark.anyio
    async def test_matching_if_none_match_returns_304(
        self, response_cache, request_factory
    ):
        response = residents_response()
        await response_cache.cache_response(request_factory(), response)
        etag = response.headers["ETag"]

        cached = await response_cache.get_cached_response(
            request_factory(headers={"If-None-Match": etag})
        )

        assert cached.status_code == 304
        assert cached.body == b""
        assert cached.headers["ETag"] == etag
        assert cached.headers["X-Cache"] == "HIT"

    @pytest.mark.anyio
    async def test_non_matching_if_none_match_returns_full_body(
        self, response_cache, request_factory
    ):
        await response_cache.cache_response(request_factory(), residents_response())

        cached = await response_cache.get_cached_response(
            request_factory(headers={"If-None-Match": '"0000000000000000"'})
        )

        assert cached.status_code == 200
        assert cached.body

    @pytest.mark.anyio
    async def test_stale_entry_is_deleted(
        self, response_cache, request_factory, manager, clock
    ):
        config = CacheConfig(ttl=30)
        request = request_factory()
        await response_cache.cache_response(request, residents_response(), config)
        key = response_cache.generate_cache_key(request, config)

        clock.advance(31)

        assert await response_cache.get_cached_response(request, config) is None
        assert await manager.client.exists(f"rbi:{key}") is False

    @pytest.mark.anyio
    async def test_other_authorization_does_not_hit(
        self, response_cache, request_factory
    ):
        config = CachePresets.residents
        await response_cache.cache_response(
            request_factory(headers={"Authorization": "Bearer a"}),
            residents_response(),
            config,
        )

        assert (
            await response_cache.get_cached_response(
                request_factory(headers={"Authorization": "Bearer b"}), config
            )
            is None
        )
        assert (
            await response_cache.get_cached_response(
                request_factory(headers={"Authorization": "Bearer a"}), config
            )
            is not None
        )

    @pytest.mark.anyio
    async def test_post_is_never_stored(self, response_cache, request_factory, manager):
        stored = await response_cache.cache_response(
            request_factory(method="POST"), residents_response()
        )

        assert stored is False
        assert (await manager.get_stats())["keys"] == 0

    @pytest.mark.anyio
    async def test_sensitive_headers_are_not_stored(
        self, response_cache, request_factory
    ):
        response = residents_response()
        response.set_cookie("session", "abc")
        response.headers["X-Trace"] = "t-1"

        await response_cache.cache_response(request_factory(), response)
        cached = await response_cache.get_cached_response(request_factory())

        assert "set-cookie" not in cached.headers
        assert cached.headers["x-trace"] == "t-1"

    @pytest.mark.anyio
    async def test_text_body_is_cached_raw(self, response_cache, request_factory):
        await response_cache.cache_response(
            request_factory(path="/robots.txt"), PlainTextResponse("User-agent: *")
        )

        cached = await response_cache.get_cached_response(
            request_factory(path="/robots.txt")
        )

        assert cached.body == b"User-agent: *"
        assert cached.headers["content-type"].startswith("text/plain")

    @pytest.mark.anyio
    async def test_streaming_response_is_not_cached(
        self, response_cache, request_factory
    ):
        async def chunks():
            yield b"data"

        stored = await response_cache.cache_response(
            request_factory(), StreamingResponse(chunks())
        )

        assert stored is False

    @pytest.mark.anyio
    async def test_malformed_entry_is_treated_as_miss(
        self, response_cache, request_factory, manager
    ):
        request = request_factory()
        await manager.set(response_cache.generate_cache_key(request), {"foo": 1})

        assert await response_cache.get_cached_response(request) is None

    @pytest.mark.anyio
    async def test_lookup_and_store_are_timed(
        self, response_cache, request_factory, monitor
    ):
        await response_cache.get_cached_response(request_factory())
        await response_cache.cache_response(request_factory(), residents_response())

        operations = monitor.get_operation_metrics()
        assert operations["cache_lookup"]["count"] == 1
        assert operations["cache_store"]["count"] == 1


class TestBackgroundStore:
    @pytest.mark.anyio
    async def test_schedule_sets_headers_then_stores(
        self, response_cache, request_factory
    ):
        response = residents_response()

        task = response_cache.schedule_cache_response(request_factory(), response)

        assert task is not None
        assert response.headers["X-Cache"] == "MISS"
        await response_cache.drain()
        assert await response_cache.get_cached_response(request_factory()) is not None

    @pytest.mark.anyio
    async def test_schedule_skips_uncacheable(self, response_cache, request_factory):
        task = response_cache.schedule_cache_response(
            request_factory(method="POST"), residents_response()
        )
        assert task is None

    @pytest.mark.anyio
    async def test_background_failure_reaches_error_callback(
        self, response_cache, request_factory, manager
    ):
        manager.set = AsyncMock(side_effect=RuntimeError("boom"))
        on_error = MagicMock()

        response_cache.schedule_cache_response(
            request_factory(), residents_response(), on_error=on_error
        )
        await response_cache.drain()

        on_error.assert_called_once()
        assert isinstance(on_error.call_args.args[0], RuntimeError)


class TestInvalidationAndStats:
    @pytest.mark.anyio
    async def test_invalidate_by_path_fragment(self, response_cache, request_factory):
        await response_cache.cache_response(
            request_factory(path="/api/residents"), residents_response()
        )
        await response_cache.cache_response(
            request_factory(path="/api/dashboard"), residents_response()
        )

        deleted = await response_cache.invalidate("residents", tags=("residents",))

        assert deleted == 1
        assert await response_cache.get_cached_response(
            request_factory(path="/api/residents")
        ) is None
        assert await response_cache.get_cached_response(
            request_factory(path="/api/dashboard")
        ) is not None

    @pytest.mark.anyio
    async def test_invalidate_sanitizes_pattern(self, response_cache, request_factory):
        await response_cache.cache_response(
            request_factory(path="/api/residents"), residents_response()
        )

        assert await response_cache.invalidate("/api/residents") == 1

    @pytest.mark.anyio
    async def test_stats_hit_rate(self, response_cache, request_factory):
        await response_cache.get_cached_response(request_factory())
        await response_cache.cache_response(request_factory(), residents_response())
        await response_cache.get_cached_response(request_factory())

        stats = await response_cache.get_stats()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "50.00%"
        assert stats["responses"]["hits"] == 1

    @pytest.mark.anyio
    async def test_stats_without_hits(self, response_cache):
        assert (await response_cache.get_stats())["hit_rate"] == "0%"


class TestWithResponseCache:
    @pytest.mark.anyio
    async def test_handler_runs_once(self, response_cache, request_factory):
        handler = AsyncMock(side_effect=lambda: residents_response())
        cached_handler = with_response_cache(response_cache, CachePresets.dashboard)

        first = await cached_handler(request_factory(), handler)
        await response_cache.drain()
        second = await cached_handler(request_factory(), handler)

        handler.assert_awaited_once()
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.body == first.body

    @pytest.mark.anyio
    async def test_post_always_reaches_handler(self, response_cache, request_factory):
        handler = AsyncMock(side_effect=lambda: residents_response())
        cached_handler = with_response_cache(response_cache)

        await cached_handler(request_factory(method="POST"), handler)
        await cached_handler(request_factory(method="POST"), handler)

        assert handler.await_count == 2
