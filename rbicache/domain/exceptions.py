"""Custom exception hierarchy for the RBI cache service.

Cache failures are never allowed to fail a request on their own; these types
exist so that backends can signal failures precisely and callers can log them
with context before degrading to a miss.
"""

from typing import Optional, Dict, Any


class RbiCacheException(Exception):
    """Base exception for all service-specific exceptions."""

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        self.details = details or {}


class CacheError(RbiCacheException):
    """Base exception for cache-related errors."""

    pass


class CacheBackendError(CacheError):
    """Raised when a cache backend operation fails."""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        key: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, request_id, details)
        self.backend = backend
        self.key = key


class CacheSerializationError(CacheError):
    """Raised when a value cannot be serialized for storage."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, request_id, details)
        self.key = key


class ConfigurationError(RbiCacheException):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, request_id, details)
        self.config_key = config_key


class RateLimitExceededError(RbiCacheException):
    """Raised when a client exceeds a rate limiting rule."""

    def __init__(
        self,
        message: str,
        rule_key: Optional[str] = None,
        retry_after: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, request_id, details)
        self.rule_key = rule_key
        self.retry_after = retry_after
