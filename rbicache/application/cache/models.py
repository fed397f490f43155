"""Data models for the cache module."""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class CacheEntry:
    """A value held by the in-memory backend, as its JSON snapshot."""

    data: Any
    timestamp: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        """Check if this entry has outlived its TTL at time *now*."""
        return now - self.timestamp > self.ttl_seconds


@dataclass
class CachedResponse:
    """Represents a cached HTTP response.

    Stored in the backend as a plain dict (see :meth:`to_dict`) so that every
    backend, including Redis, can persist it as JSON.
    """

    status: int
    headers: Dict[str, str]
    body: Any
    timestamp: float
    etag: Optional[str] = None

    def age_seconds(self, now: float) -> float:
        return now - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedResponse":
        return cls(
            status=int(data["status"]),
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
            timestamp=float(data["timestamp"]),
            etag=data.get("etag"),
        )


@dataclass
class CacheStats:
    """Backend statistics snapshot."""

    hits: int = 0
    misses: int = 0
    keys: int = 0
    memory_usage_bytes: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "hits": self.hits,
            "misses": self.misses,
            "keys": self.keys,
            "memory_usage_bytes": self.memory_usage_bytes,
        }
        stats.update(self.extra)
        return stats
