"""
Shared Configuration - Application Settings and Environment Management
Centralized configuration management for the business directory.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Cache sizing and TTL settings per cache domain
- API client configuration
- Supabase backend configuration
"""
from typing import Optional, List
from enum import Enum

from pydantic import Field, field_validator, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheSettings(BaseSettings):
    """In-memory cache configuration settings.

    TTLs are milliseconds, loop intervals are seconds.
    """

    model_config = SettingsConfigDict(env_prefix="CACHE_", env_file=".env", case_sensitive=False, extra="ignore")

    # General-purpose cache
    general_max_size: int = 2000
    general_default_ttl_ms: int = 10 * 60 * 1000

    # Business listings
    business_max_size: int = 500
    business_default_ttl_ms: int = 15 * 60 * 1000

    # Search results
    search_max_size: int = 1000
    search_default_ttl_ms: int = 5 * 60 * 1000

    # AI responses and recommendations
    ai_max_size: int = 200
    ai_default_ttl_ms: int = 30 * 60 * 1000

    compression_threshold: int = 1024
    single_flight: bool = False

    # Lifecycle loops
    cleanup_interval_seconds: float = 60.0
    warmup_interval_seconds: float = 30 * 60.0
    periodic_warmup_enabled: bool = True

    @field_validator(
        "general_max_size", "business_max_size", "search_max_size", "ai_max_size",
        "general_default_ttl_ms", "business_default_ttl_ms", "search_default_ttl_ms", "ai_default_ttl_ms",
    )
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Cache sizes and TTLs must be positive")
        return v

    @field_validator("cleanup_interval_seconds", "warmup_interval_seconds")
    @classmethod
    def validate_interval(cls, v):
        if v <= 0:
            raise ValueError("Intervals must be greater than zero")
        return v


class APIClientSettings(BaseSettings):
    """Outbound API client configuration settings."""

    model_config = SettingsConfigDict(env_prefix="API_", env_file=".env", case_sensitive=False, extra="ignore")

    base_url: str = ""
    timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    default_cache_ttl_ms: int = 5 * 60 * 1000

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v):
        if v < 1:
            raise ValueError("At least one request attempt is required")
        return v


class SupabaseSettings(BaseSettings):
    """Supabase configuration settings (hosted Postgres behind PostgREST)."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    supabase_url: Optional[HttpUrl] = None
    supabase_anon_key: Optional[str] = None
    supabase_schema: str = "public"

    def rest_url(self) -> str:
        """Get the PostgREST base URL."""
        if not self.supabase_url:
            return ""
        return f"{str(self.supabase_url).rstrip('/')}/rest/v1"


class MonitoringSettings(BaseSettings):
    """Monitoring and logging configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    log_level: LogLevel = LogLevel.INFO
    log_format: str = "colored"
    log_file: Optional[str] = None

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "colored", "standard"):
            raise ValueError("log_format must be one of: json, colored, standard")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="allow")

    # Application settings
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    app_name: str = "Business Directory"
    app_version: str = "1.0.0"

    # Component settings
    cache: CacheSettings = Field(default_factory=CacheSettings)
    api: APIClientSettings = Field(default_factory=APIClientSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("debug")
    @classmethod
    def validate_debug_in_production(cls, v, info):
        if info.data.get("environment") == Environment.PRODUCTION and v:
            raise ValueError("Debug mode should not be enabled in production")
        return v

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == Environment.TESTING


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings, building them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def validate_configuration(settings: Optional[Settings] = None) -> List[str]:
    """
    Validate the current configuration and return any errors.

    Returns:
        List of validation error messages
    """
    settings = settings or get_settings()
    errors = []

    if settings.supabase.supabase_url and not settings.supabase.supabase_anon_key:
        errors.append("SUPABASE_ANON_KEY is required when SUPABASE_URL is set")

    if settings.cache.warmup_interval_seconds < settings.cache.cleanup_interval_seconds:
        errors.append("Warmup interval should not be shorter than the cleanup interval")

    if settings.is_production():
        if settings.debug:
            errors.append("Debug mode should be disabled in production")
        if not settings.supabase.supabase_url:
            errors.append("SUPABASE_URL should be configured in production")

    return errors


def get_config_summary(settings: Optional[Settings] = None) -> dict:
    """
    Get a summary of the current configuration (without sensitive data).

    Returns:
        Dictionary with configuration summary
    """
    settings = settings or get_settings()
    cache = settings.cache
    return {
        "environment": settings.environment,
        "debug": settings.debug,
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "cache": {
            "general": {"max_size": cache.general_max_size, "default_ttl_ms": cache.general_default_ttl_ms},
            "business": {"max_size": cache.business_max_size, "default_ttl_ms": cache.business_default_ttl_ms},
            "search": {"max_size": cache.search_max_size, "default_ttl_ms": cache.search_default_ttl_ms},
            "ai": {"max_size": cache.ai_max_size, "default_ttl_ms": cache.ai_default_ttl_ms},
            "single_flight": cache.single_flight,
        },
        "api": {
            "base_url": settings.api.base_url,
            "retry_attempts": settings.api.retry_attempts,
        },
        "monitoring": {
            "log_level": settings.monitoring.log_level,
            "log_format": settings.monitoring.log_format,
        },
        "supabase_configured": bool(settings.supabase.supabase_url),
    }
