"""Constants module for the RBI cache service.

Contains default values for the cache backends, the HTTP response cache,
rate limiting rules and monitoring.
"""

from typing import FrozenSet, Tuple

# ============================================================================
# Cache Configuration Constants
# ============================================================================

# Cache client settings
DEFAULT_CACHE_KEY_PREFIX = "rbi:"  # Namespace for every key written by the manager
DEFAULT_CACHE_MAX_SIZE = 1000  # Maximum number of entries in the memory backend
DEFAULT_CACHE_TTL_SECONDS = 300  # Default response TTL (5 minutes)
CACHE_EVICTION_FRACTION = 0.2  # Share of oldest entries removed per cleanup pass

# Memory estimate: UTF-16 char size plus fixed per-entry overhead
CACHE_BYTES_PER_CHAR = 2
CACHE_ENTRY_OVERHEAD_BYTES = 16

# Response cache settings
RESPONSE_CACHE_KEY_NAMESPACE = "response"
DEFAULT_CACHEABLE_METHODS: Tuple[str, ...] = ("GET", "HEAD")
DEFAULT_CACHEABLE_STATUS_CODES: Tuple[int, ...] = (
    200,
    201,
    203,
    300,
    301,
    302,
    304,
    307,
    308,
    410,
)
EXCLUDED_CACHED_HEADERS: FrozenSet[str] = frozenset(
    {"set-cookie", "authorization", "x-cache"}
)
NO_CACHE_REQUEST_HEADERS: Tuple[str, ...] = ("x-no-cache",)
AUTH_HASH_PREFIX_LENGTH = 8
ETAG_HASH_LENGTH = 16

# Response headers
HEADER_X_CACHE = "X-Cache"
HEADER_X_CACHE_AGE = "X-Cache-Age"
HEADER_ETAG = "ETag"
HEADER_CACHE_CONTROL = "Cache-Control"
CACHE_HIT = "HIT"
CACHE_MISS = "MISS"

# ============================================================================
# Rate Limiting Constants
# ============================================================================

RATE_LIMIT_KEY_PREFIX = "rate_limit"
DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_SECONDS = 300  # Cleanup interval (5 minutes)
DEFAULT_RETRY_AFTER_SECONDS = 60

# ============================================================================
# Monitoring Constants
# ============================================================================

MONITORING_RECENT_DURATIONS_MAXLEN = 1000  # Recent request duration tracking

# ============================================================================
# Error Messages
# ============================================================================

ERROR_RATE_LIMIT_EXCEEDED = "Rate limit exceeded. Try again in {retry_after} seconds."
ERROR_INTERNAL = "An unexpected internal server error occurred."
