"""Key/value cache clients.

``CacheClient`` is the backend contract used by :class:`CacheManager`. The
in-memory implementation lives here; the Redis implementation is in
``redis_client``.
"""

import json
import math
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Pattern

from .models import CacheEntry, CacheStats
from .statistics import CacheStatistics
from ...constants import (
    CACHE_BYTES_PER_CHAR,
    CACHE_ENTRY_OVERHEAD_BYTES,
    CACHE_EVICTION_FRACTION,
    DEFAULT_CACHE_MAX_SIZE,
)
from ...domain.exceptions import CacheSerializationError
from ...logging import debug, LogRecord, LogEvent


def glob_to_regex(pattern: str) -> Pattern[str]:
    """Translate a glob where ``*`` matches any run of characters.

    Every other character is matched literally and the whole key must match.
    """
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile("^" + ".*".join(parts) + "$")


def serialize_value(value: Any) -> str:
    """Compact JSON snapshot of *value*, non-ASCII characters kept as is."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def estimate_entry_size(key: str, value: Any) -> int:
    """Approximate bytes held by one entry (UTF-16 chars plus fixed overhead)."""
    return _serialized_entry_size(key, serialize_value(value))


def _serialized_entry_size(key: str, serialized: str) -> int:
    return (
        CACHE_BYTES_PER_CHAR * len(key)
        + CACHE_BYTES_PER_CHAR * len(serialized)
        + CACHE_ENTRY_OVERHEAD_BYTES
    )


class CacheClient(ABC):
    """Async key/value store contract shared by every cache backend."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the live value for *key* or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        """Store *value* under *key* for *ttl_seconds*."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove *key*; True when an entry was removed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """True when *key* holds a live entry."""

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: float) -> bool:
        """Set a new TTL for *key* and restart its age."""

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        """List live keys matching the glob *pattern*."""

    @abstractmethod
    async def flush(self) -> bool:
        """Remove every entry and reset statistics."""

    @abstractmethod
    async def get_stats(self) -> CacheStats:
        """Return hit/miss counters, key count and memory estimate."""

    async def close(self) -> None:
        """Release backend resources."""
        return None


class MemoryCacheClient(CacheClient):
    """Process-local cache backed by a dict.

    Values are held as JSON snapshots, so callers never share state with the
    store and anything the Redis backend would reject is rejected here too.
    Expiry is lazy: an expired entry is removed when it is next read. When
    the store is full, ``set`` first drops expired entries and then the
    oldest fifth of the remaining entries by insertion time.
    """

    name = "memory"

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}
        self._statistics = CacheStatistics()

    def __len__(self) -> int:
        return len(self._store)

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._store[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live_entry(key)
        if entry is None:
            self._statistics.record_miss()
            return None
        self._statistics.record_hit()
        return json.loads(entry.data)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        try:
            payload = serialize_value(value)
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(str(e), key=key) from e
        if key not in self._store and len(self._store) >= self.max_size:
            self._cleanup()
        self._store[key] = CacheEntry(
            data=payload, timestamp=self._clock(), ttl_seconds=ttl_seconds
        )
        return True

    async def delete(self, key: str) -> bool:
        entry = self._store.pop(key, None)
        return entry is not None and not entry.is_expired(self._clock())

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        entry = self._live_entry(key)
        if entry is None:
            return False
        entry.ttl_seconds = ttl_seconds
        entry.timestamp = self._clock()
        return True

    async def keys(self, pattern: str = "*") -> List[str]:
        regex = glob_to_regex(pattern)
        return [
            key
            for key in list(self._store)
            if regex.match(key) and self._live_entry(key) is not None
        ]

    async def flush(self) -> bool:
        self._store.clear()
        self._statistics.reset()
        return True

    async def get_stats(self) -> CacheStats:
        memory = sum(
            _serialized_entry_size(key, entry.data)
            for key, entry in self._store.items()
        )
        return CacheStats(
            hits=self._statistics.hits,
            misses=self._statistics.misses,
            keys=len(self._store),
            memory_usage_bytes=memory,
            extra={"evictions": self._statistics.evictions, "max_size": self.max_size},
        )

    def _cleanup(self) -> None:
        """Make room for one new entry."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            del self._store[key]

        evicted = 0
        if len(self._store) >= self.max_size:
            oldest_first = sorted(
                self._store.items(), key=lambda item: item[1].timestamp
            )
            evicted = max(1, math.floor(len(oldest_first) * CACHE_EVICTION_FRACTION))
            for key, _ in oldest_first[:evicted]:
                del self._store[key]

        self._statistics.record_eviction(len(expired) + evicted)
        debug(
            LogRecord(
                event=LogEvent.CACHE_EVICTION.value,
                message="Memory cache cleanup",
                data={
                    "expired_removed": len(expired),
                    "oldest_removed": evicted,
                    "size": len(self._store),
                    "max_size": self.max_size,
                },
            )
        )
