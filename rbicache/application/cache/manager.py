"""Namespaced cache access with best-effort error handling."""

import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from .client import CacheClient
from ...constants import DEFAULT_CACHE_KEY_PREFIX, DEFAULT_CACHE_TTL_SECONDS
from ...logging import debug, info, warning, error, LogRecord, LogEvent

T = TypeVar("T")

ComputeFn = Callable[[], Union[T, Awaitable[T]]]


class CacheManager:
    """
    Prefixes every key and shields callers from backend failures.

    The cache is optional infrastructure: a failed read is reported as a
    miss and a failed write as ``False``, never as an exception.
    """

    def __init__(
        self,
        client: CacheClient,
        prefix: str = DEFAULT_CACHE_KEY_PREFIX,
        default_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
    ):
        self.client = client
        self.prefix = prefix
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        full_key = self._key(key)
        try:
            return await self.client.get(full_key)
        except Exception as e:
            error(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache get failed",
                    data={"key": full_key, "backend": self.client.name},
                ),
                exc=e,
            )
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        full_key = self._key(key)
        ttl_seconds = self.default_ttl if ttl is None else ttl
        try:
            return await self.client.set(full_key, value, ttl_seconds)
        except Exception as e:
            error(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache set failed",
                    data={"key": full_key, "ttl": ttl_seconds, "backend": self.client.name},
                ),
                exc=e,
            )
            return False

    async def delete(self, key: str) -> bool:
        full_key = self._key(key)
        try:
            return await self.client.delete(full_key)
        except Exception as e:
            error(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache delete failed",
                    data={"key": full_key, "backend": self.client.name},
                ),
                exc=e,
            )
            return False

    async def get_or_set(
        self, key: str, compute_fn: ComputeFn, ttl: Optional[float] = None
    ) -> Any:
        """Return the cached value for *key*, computing and storing it on a miss.

        *compute_fn* may be a plain callable or return an awaitable. Errors
        raised by *compute_fn* propagate to the caller; nothing is stored.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = compute_fn()
        if inspect.isawaitable(value):
            value = await value
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching the glob *pattern* within this namespace."""
        full_pattern = self._key(pattern)
        try:
            keys = await self.client.keys(full_pattern)
            deleted = 0
            for key in keys:
                if await self.client.delete(key):
                    deleted += 1
        except Exception as e:
            error(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache pattern invalidation failed",
                    data={"pattern": full_pattern, "backend": self.client.name},
                ),
                exc=e,
            )
            return 0

        info(
            LogRecord(
                event=LogEvent.CACHE_INVALIDATION.value,
                message=f"Invalidated {deleted} cache entries",
                data={"pattern": full_pattern, "deleted": deleted},
            )
        )
        return deleted

    async def get_stats(self) -> Dict[str, Any]:
        try:
            stats = await self.client.get_stats()
        except Exception as e:
            warning(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache stats unavailable",
                    data={"backend": self.client.name},
                ),
                exc=e,
            )
            return {"backend": self.client.name, "error": str(e)}
        result = stats.to_dict()
        result["backend"] = self.client.name
        result["prefix"] = self.prefix
        return result

    async def clear(self) -> bool:
        try:
            cleared = await self.client.flush()
        except Exception as e:
            error(
                LogRecord(
                    event=LogEvent.CACHE_BACKEND_ERROR.value,
                    message="Cache clear failed",
                    data={"backend": self.client.name},
                ),
                exc=e,
            )
            return False
        debug(
            LogRecord(
                event=LogEvent.CACHE_EVENT.value,
                message="Cache cleared",
                data={"backend": self.client.name},
            )
        )
        return cleared
