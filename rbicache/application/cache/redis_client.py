"""Redis cache backend.

Disabled unless ``REDIS_ENABLED`` is set; see :func:`create_cache_client`.
Values are stored as JSON with a server-side TTL, so expiry and eviction are
delegated to Redis.
"""

import json
from typing import Any, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .client import CacheClient
from .models import CacheStats
from .statistics import CacheStatistics
from ...domain.exceptions import CacheBackendError, CacheSerializationError
from ...logging import info, LogRecord, LogEvent


class RedisCacheClient(CacheClient):
    """``CacheClient`` backed by a Redis database."""

    name = "redis"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self._redis = client
        self._statistics = CacheStatistics()

    def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        return self._redis

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._get_redis().get(key)
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name, key=key) from e
        if raw is None:
            self._statistics.record_miss()
            return None
        self._statistics.record_hit()
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(str(e), key=key) from e
        try:
            # SETEX needs whole seconds of at least one.
            await self._get_redis().setex(key, max(1, int(ttl_seconds)), payload)
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name, key=key) from e
        return True

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._get_redis().delete(key))
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name, key=key) from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._get_redis().exists(key))
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name, key=key) from e

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        try:
            return bool(await self._get_redis().expire(key, max(1, int(ttl_seconds))))
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name, key=key) from e

    async def keys(self, pattern: str = "*") -> List[str]:
        try:
            return list(await self._get_redis().keys(pattern))
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name) from e

    async def flush(self) -> bool:
        try:
            await self._get_redis().flushdb()
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name) from e
        self._statistics.reset()
        info(
            LogRecord(
                event=LogEvent.CACHE_EVENT.value,
                message="Redis cache flushed",
                data={"backend": self.name},
            )
        )
        return True

    async def get_stats(self) -> CacheStats:
        try:
            client = self._get_redis()
            key_count = await client.dbsize()
            memory_info = await client.info("memory")
        except RedisError as e:
            raise CacheBackendError(str(e), backend=self.name) from e
        return CacheStats(
            hits=self._statistics.hits,
            misses=self._statistics.misses,
            keys=int(key_count),
            memory_usage_bytes=int(memory_info.get("used_memory", 0)),
        )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
