"""Backend selection for the cache client."""

from .client import CacheClient, MemoryCacheClient
from .redis_client import RedisCacheClient
from ...config import Settings
from ...logging import info, LogRecord, LogEvent


def create_cache_client(settings: Settings) -> CacheClient:
    """Build the cache backend described by *settings*.

    Redis is only used when explicitly enabled; otherwise every process keeps
    its own in-memory cache.
    """
    if settings.redis_enabled and settings.redis_url:
        client: CacheClient = RedisCacheClient(settings.redis_url)
    else:
        client = MemoryCacheClient(max_size=settings.cache_max_size)

    info(
        LogRecord(
            event=LogEvent.STARTUP.value,
            message=f"Cache backend selected: {client.name}",
            data={"backend": client.name, "max_size": settings.cache_max_size},
        )
    )
    return client
