from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices, field_validator
from typing import Optional, List, Union, Any

from urllib.parse import urlparse

from rbicache.constants import (
    DEFAULT_CACHE_KEY_PREFIX,
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
)
from rbicache.domain.exceptions import ConfigurationError

APP_ENVIRONMENTS = ("development", "staging", "production", "test")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", env_prefix="", case_sensitive=False
    )

    app_name: str = "rbi-cache"
    app_version: str = "1.0.0"
    app_env: str = Field(
        default="development", validation_alias=AliasChoices("APP_ENV", "NODE_ENV")
    )
    enable_dev_cache: bool = Field(
        default=False, validation_alias=AliasChoices("ENABLE_DEV_CACHE")
    )

    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL"))
    log_file_path: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("LOG_FILE_PATH")
    )
    error_log_file_path: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ERROR_LOG_FILE_PATH")
    )
    log_pretty_console: bool = Field(
        default=False, validation_alias=AliasChoices("LOG_PRETTY_CONSOLE")
    )
    host: str = "127.0.0.1"
    port: int = Field(default=8000, validation_alias=AliasChoices("PORT"))
    reload: bool = False

    # Cache configuration
    cache_key_prefix: str = Field(
        default=DEFAULT_CACHE_KEY_PREFIX,
        validation_alias=AliasChoices("CACHE_KEY_PREFIX"),
    )
    cache_max_size: int = Field(
        default=DEFAULT_CACHE_MAX_SIZE, validation_alias=AliasChoices("CACHE_MAX_SIZE")
    )
    cache_default_ttl: int = Field(
        default=DEFAULT_CACHE_TTL_SECONDS,
        validation_alias=AliasChoices("CACHE_DEFAULT_TTL"),
    )
    redis_enabled: bool = Field(
        default=False, validation_alias=AliasChoices("REDIS_ENABLED")
    )
    redis_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("REDIS_URL")
    )

    # None exposes the cache admin routes everywhere except production.
    enable_cache_admin: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("ENABLE_CACHE_ADMIN")
    )

    # Rate limiting configuration
    rate_limit_enabled: bool = Field(
        default=True, validation_alias=AliasChoices("RATE_LIMIT_ENABLED")
    )
    rate_limit_rule: str = Field(
        default="api", validation_alias=AliasChoices("RATE_LIMIT_RULE")
    )
    rate_limit_cleanup_interval_seconds: int = Field(
        default=DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
        validation_alias=AliasChoices("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS"),
    )

    enable_cors: bool = Field(
        default=False, validation_alias=AliasChoices("ENABLE_CORS")
    )
    cors_allow_origins: Union[List[str], str] = Field(
        default_factory=list, validation_alias=AliasChoices("CORS_ALLOW_ORIGINS")
    )
    cors_allow_methods: Union[List[str], str] = Field(
        default_factory=lambda: ["GET", "POST", "OPTIONS"],
        validation_alias=AliasChoices("CORS_ALLOW_METHODS"),
    )
    cors_allow_headers: Union[List[str], str] = Field(
        default_factory=lambda: ["Authorization", "Content-Type", "If-None-Match"],
        validation_alias=AliasChoices("CORS_ALLOW_HEADERS"),
    )

    redact_log_fields: Union[List[str], str] = Field(
        default_factory=lambda: ["authorization", "cookie", "set-cookie"],
        validation_alias=AliasChoices("REDACT_LOG_FIELDS"),
    )

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "redact_log_fields",
    )
    @classmethod
    def parse_comma_separated(cls, v: Union[List[str], str]) -> List[str]:
        """Parse comma-separated string values into lists for configuration fields.

        Handles both string inputs (splitting by commas) and already-list inputs.
        Empty strings are converted to empty lists.
        """
        if isinstance(v, str):
            if v.strip() == "":
                return []
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("app_env")
    @classmethod
    def normalize_app_env(cls, v: str) -> str:
        return v.strip().lower()

    def __init__(self, **kwargs: Any) -> None:
        """Initialize settings object and validate cache configuration.

        Raises:
            ConfigurationError: If any cache or environment setting is invalid
        """
        super().__init__(**kwargs)
        self._validate_environment()
        self._validate_cache()

    def _validate_environment(self) -> None:
        if self.app_env not in APP_ENVIRONMENTS:
            raise ConfigurationError(
                f"APP_ENV must be one of {', '.join(APP_ENVIRONMENTS)}; got '{self.app_env}'.",
                config_key="APP_ENV",
            )

    def _validate_cache(self) -> None:
        """Validates cache sizing and the optional Redis backend URL."""
        errors = []
        if self.cache_max_size <= 0:
            errors.append("CACHE_MAX_SIZE must be a positive integer.")
        if self.cache_default_ttl <= 0:
            errors.append("CACHE_DEFAULT_TTL must be a positive integer.")
        if self.rate_limit_cleanup_interval_seconds <= 0:
            errors.append("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS must be positive.")
        if self.redis_enabled:
            if not self.redis_url:
                errors.append("REDIS_URL is required when REDIS_ENABLED is true.")
            else:
                parsed = urlparse(self.redis_url)
                if parsed.scheme not in ("redis", "rediss", "unix"):
                    errors.append("REDIS_URL must use the redis://, rediss:// or unix:// scheme.")
        if errors:
            raise ConfigurationError(
                "Configuration Error:\n" + "\n".join(errors),
                details={"errors": errors},
            )

    def is_production(self) -> bool:
        return self.app_env == "production"

    def is_cache_enabled(self) -> bool:
        """Response caching runs in production, or anywhere ENABLE_DEV_CACHE is set."""
        return self.is_production() or self.enable_dev_cache

    def is_cache_admin_enabled(self) -> bool:
        if self.enable_cache_admin is None:
            return not self.is_production()
        return self.enable_cache_admin
