"""Cache hit/miss tracking."""


class CacheStatistics:
    """Tracks hit, miss and eviction counters for a cache backend."""

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def record_hit(self):
        self.hits += 1

    def record_miss(self):
        self.misses += 1

    def record_eviction(self, count: int = 1):
        self.evictions += count

    def reset(self):
        """Reset all statistics."""
        self.hits = 0
        self.misses = 0
        self.evictions = 0
