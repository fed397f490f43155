"""Cache backends, the namespaced cache manager and the HTTP response cache."""

from .client import CacheClient, MemoryCacheClient
from .factory import create_cache_client
from .manager import CacheManager
from .models import CacheEntry, CachedResponse, CacheStats
from .redis_client import RedisCacheClient
from .response_cache import (
    CacheConditions,
    CacheConfig,
    CachePresets,
    ResponseCache,
    cached_endpoint,
    with_response_cache,
)

__all__ = [
    "CacheClient",
    "MemoryCacheClient",
    "RedisCacheClient",
    "create_cache_client",
    "CacheManager",
    "CacheEntry",
    "CachedResponse",
    "CacheStats",
    "CacheConditions",
    "CacheConfig",
    "CachePresets",
    "ResponseCache",
    "cached_endpoint",
    "with_response_cache",
]
