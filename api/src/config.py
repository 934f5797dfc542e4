"""
FastAPI application configuration using Pydantic Settings.

Provides centralized configuration for:
- API settings (prefix, environment, bind address)
- API key authentication
- Per-category rate limiting windows
- Calculation bounds
- Drug catalog loading and refresh
- CORS and security headers
- Logging and monitoring

All settings support environment variable overrides and .env file loading.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Dict, List, Optional
from functools import lru_cache

from api.src.models.rate_limit import EndpointCategory, RateLimitPolicy


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables with the
    prefix "DOSAGE_API_" (e.g., DOSAGE_API_RATE_LIMIT_CALCULATE_PER_MINUTE).
    Mappings and lists are given as JSON, e.g.
    DOSAGE_API_API_KEYS='{"key-123": "clinic-a"}'.

    Environment variables are loaded from:
    1. System environment
    2. .env file in the current directory
    3. Default values defined below
    """

    # =========================================================================
    # API Settings
    # =========================================================================

    app_name: str = Field(
        default="Veterinary Dosage API",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="API version"
    )
    api_prefix: str = Field(
        default="/api",
        description="API URL prefix"
    )

    debug: bool = Field(
        default=False,
        description="Debug mode - enables verbose logging and error traces"
    )
    environment: str = Field(
        default="production",
        description="Environment: development|staging|production"
    )

    host: str = Field(
        default="0.0.0.0",
        description="API bind host"
    )
    port: int = Field(
        default=8000,
        description="API bind port",
        gt=0,
        lt=65536
    )

    # =========================================================================
    # API Key Authentication
    # =========================================================================

    api_keys: Dict[str, str] = Field(
        default_factory=dict,
        description="Accepted API keys mapped to client names"
    )
    api_key_header: str = Field(
        default="X-API-Key",
        description="API key header name"
    )

    # =========================================================================
    # Rate Limiting Settings
    # =========================================================================

    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable rate limiting"
    )
    rate_limit_burst_window_seconds: int = Field(
        default=10,
        description="Burst window length (seconds)",
        gt=0,
        le=60
    )
    rate_limit_idle_eviction_seconds: int = Field(
        default=300,
        description="How often idle per-key state is evicted (seconds)",
        gt=0
    )
    rate_limit_storage_uri: str = Field(
        default="memory://",
        description="limits storage URI holding window counts (memory://, redis://host:port, ...)"
    )

    rate_limit_calculate_per_minute: int = Field(
        default=60,
        description="Calculation requests per minute per API key",
        gt=0
    )
    rate_limit_calculate_per_hour: int = Field(
        default=1000,
        description="Calculation requests per hour per API key",
        gt=0
    )
    rate_limit_calculate_burst: int = Field(
        default=10,
        description="Calculation requests per burst window per API key",
        gt=0
    )

    rate_limit_lookup_per_minute: int = Field(
        default=120,
        description="Catalog lookups per minute per API key",
        gt=0
    )
    rate_limit_lookup_per_hour: int = Field(
        default=5000,
        description="Catalog lookups per hour per API key",
        gt=0
    )
    rate_limit_lookup_burst: int = Field(
        default=20,
        description="Catalog lookups per burst window per API key",
        gt=0
    )

    # =========================================================================
    # Calculation Settings
    # =========================================================================

    max_drugs_per_request: int = Field(
        default=50,
        description="Maximum drug lines in one calculation request",
        gt=0,
        le=500
    )
    weight_min_kg: float = Field(
        default=0.1,
        description="Smallest accepted patient weight (kg)",
        gt=0
    )
    weight_max_kg: float = Field(
        default=1000.0,
        description="Largest accepted patient weight (kg)",
        gt=0
    )

    # =========================================================================
    # Drug Catalog Settings
    # =========================================================================

    catalog_seed_path: Optional[str] = Field(
        default=None,
        description="Path of a JSON catalog overriding the bundled seed"
    )
    catalog_source_url: Optional[str] = Field(
        default=None,
        description="Remote drug reference service URL (takes precedence over the seed)"
    )
    catalog_refresh_interval: int = Field(
        default=0,
        description="Background catalog refresh interval (seconds, 0 disables)",
        ge=0
    )
    catalog_request_timeout: float = Field(
        default=10.0,
        description="Remote catalog request timeout (seconds)",
        gt=0
    )
    catalog_retry_attempts: int = Field(
        default=3,
        description="Attempts per remote catalog load",
        ge=1,
        le=10
    )
    catalog_fuzzy_threshold: float = Field(
        default=0.8,
        description="Minimum similarity for fuzzy drug name matches (0.0-1.0)",
        ge=0.0,
        le=1.0
    )

    # =========================================================================
    # CORS Settings
    # =========================================================================

    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware"
    )
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )
    cors_allow_methods: List[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        description="Allowed HTTP methods"
    )
    cors_allow_headers: List[str] = Field(
        default=["*"],
        description="Allowed HTTP headers"
    )
    cors_max_age: int = Field(
        default=600,
        description="CORS preflight cache duration (seconds)"
    )

    # =========================================================================
    # Security Settings
    # =========================================================================

    security_require_https: bool = Field(
        default=False,
        description="Send HSTS header (enable behind TLS in production)"
    )
    security_headers_enabled: bool = Field(
        default=True,
        description="Enable security headers (X-Frame-Options, etc.)"
    )
    security_hsts_max_age: int = Field(
        default=31536000,  # 1 year
        description="HSTS max age (seconds)"
    )

    # =========================================================================
    # Monitoring and Observability
    # =========================================================================

    metrics_enabled: bool = Field(
        default=True,
        description="Enable Prometheus metrics"
    )

    tracing_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing"
    )
    tracing_otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP/HTTP traces endpoint, e.g. http://otel-collector:4318/v1/traces"
    )
    tracing_sample_rate: float = Field(
        default=0.1,
        description="Trace sampling rate (0.0-1.0, where 1.0 = 100%)",
        ge=0.0,
        le=1.0
    )

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level: DEBUG|INFO|WARNING|ERROR|CRITICAL"
    )
    log_format: str = Field(
        default="json",
        description="Log format: json|text"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got: {v}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = ["development", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got: {v}")
        return v_lower

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: List[str]) -> List[str]:
        """Validate CORS origins are not empty."""
        if not v:
            return ["*"]
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        allowed = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got: {v}")
        return v_lower

    @field_validator("api_keys")
    @classmethod
    def validate_api_keys(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Reject blank keys."""
        for key in v:
            if not key or not key.strip():
                raise ValueError("api_keys must not contain blank keys")
        return v

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        """Normalize prefix to a leading slash and no trailing slash."""
        v = "/" + v.strip("/")
        return "" if v == "/" else v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def rate_limit_policies(self) -> Dict[str, RateLimitPolicy]:
        """Window policies keyed by endpoint category."""
        burst_seconds = float(self.rate_limit_burst_window_seconds)
        return {
            EndpointCategory.CALCULATE.value: RateLimitPolicy.build(
                per_minute=self.rate_limit_calculate_per_minute,
                per_hour=self.rate_limit_calculate_per_hour,
                burst=self.rate_limit_calculate_burst,
                burst_seconds=burst_seconds,
            ),
            EndpointCategory.LOOKUP.value: RateLimitPolicy.build(
                per_minute=self.rate_limit_lookup_per_minute,
                per_hour=self.rate_limit_lookup_per_hour,
                burst=self.rate_limit_lookup_burst,
                burst_seconds=burst_seconds,
            ),
        }

    # =========================================================================
    # Model Config
    # =========================================================================

    model_config = SettingsConfigDict(
        env_prefix="DOSAGE_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once from:
    1. Environment variables with DOSAGE_API_ prefix
    2. .env file in the current directory
    3. Default values

    Returns:
        Settings: Cached settings instance

    Example:
        >>> from api.src.config import get_settings
        >>> settings = get_settings()
        >>> settings.rate_limit_calculate_per_minute
        60
    """
    return Settings()


def clear_settings_cache():
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
