"""
Configuration Management - Production Ready
Centralized configuration with environment variable validation and type safety
Handles all settings for the Plan Generation Gateway including catalog,
caching, rate limiting, and the completion provider
"""

import os
from pathlib import Path
from typing import List, Optional, Dict, Any
from enum import Enum
from functools import lru_cache

from pydantic import (
    Field,
    field_validator,
    SecretStr,
    RedisDsn,
    AnyHttpUrl,
    BaseModel
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
import yaml

# Load environment variables from .env file
load_dotenv()

# ============================================================================
# ENUMS
# ============================================================================

class Environment(str, Enum):
    """Application environment enumeration"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"

    def is_production(self) -> bool:
        return self == Environment.PRODUCTION

    def is_development(self) -> bool:
        return self == Environment.DEVELOPMENT

    def is_testing(self) -> bool:
        return self == Environment.TESTING


class LogLevel(str, Enum):
    """Log level enumeration"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StoreBackend(str, Enum):
    """Backing store for the durable cache tier and the rate limiter"""
    MEMORY = "memory"
    REDIS = "redis"


# ============================================================================
# NESTED CONFIGURATION MODELS
# ============================================================================

class RedisConfig(BaseModel):
    """Redis connection configuration"""
    url: RedisDsn = Field("redis://localhost:6379/0", description="Redis connection URL")
    max_connections: int = Field(50, ge=1, le=200, description="Maximum connections")
    socket_timeout: int = Field(5, ge=1, le=30, description="Socket timeout in seconds")
    socket_connect_timeout: int = Field(5, ge=1, le=30, description="Connect timeout")
    retry_on_timeout: bool = Field(True, description="Retry on timeout")
    health_check_interval: int = Field(30, ge=5, le=120, description="Health check interval")


class CacheConfig(BaseModel):
    """Tiered plan cache configuration"""
    enabled: bool = Field(True, description="Enable plan caching")

    # Fast tier (in-process)
    fast_ttl_seconds: int = Field(900, ge=1, le=86400, description="Fast tier TTL in seconds")
    fast_max_entries: int = Field(10000, ge=10, le=1000000, description="Fast tier capacity")
    shard_count: int = Field(16, ge=1, le=1024, description="Lock shards for shared maps")
    sweep_interval_seconds: int = Field(60, ge=1, le=3600, description="Interval between expiry sweeps of in-process tiers")

    # Durable tier
    durable_backend: StoreBackend = Field(StoreBackend.REDIS, description="Durable tier backend")
    durable_key_prefix: str = Field("plans:cache:", description="Durable tier key prefix")
    durable_ttl_by_category: Dict[str, int] = Field(
        default_factory=lambda: {
            "workout": 30 * 24 * 3600,
            "meal": 7 * 24 * 3600
        },
        description="Durable TTL in seconds per intent category"
    )
    default_durable_ttl_seconds: int = Field(7 * 24 * 3600, ge=60, description="Durable TTL for unlisted categories")
    compression: bool = Field(True, description="zlib-compress durable payloads")

    # Personalization
    identity_scoped_categories: List[str] = Field(
        default_factory=list,
        description="Intent categories whose cache entries are always per identity"
    )
    identity_scope_on_exclusions: bool = Field(
        True,
        description="Key the cache per identity when a request carries exclusions"
    )

    redis: RedisConfig = RedisConfig()


class RateLimitConfig(BaseModel):
    """Rate limiting configuration"""
    enabled: bool = Field(True, description="Enable rate limiting")
    requests: int = Field(50, ge=1, le=100000, description="Requests allowed per window")
    window_seconds: int = Field(3600, ge=1, le=86400, description="Sliding window length in seconds")
    backend: StoreBackend = Field(StoreBackend.MEMORY, description="Rate limit state backend")
    key_prefix: str = Field("rl:plans:", description="Redis key prefix")


class ProviderConfig(BaseModel):
    """Completion provider configuration"""
    base_url: AnyHttpUrl = Field("https://api.openai.com/v1", description="OpenAI-compatible API URL")
    api_key: Optional[SecretStr] = Field(None, description="Provider API key")
    model: str = Field("gpt-4o-mini", description="Model name sent to the provider")
    timeout_seconds: float = Field(30.0, gt=0, le=300, description="Per-call wall clock budget")
    max_retries: int = Field(2, ge=0, le=10, description="Retries on transient failures")
    retry_backoff_seconds: float = Field(0.5, ge=0, le=30, description="Initial retry delay")
    retry_backoff_factor: float = Field(2.0, ge=1.0, le=10.0, description="Backoff multiplier")
    temperature: float = Field(0.4, ge=0.0, le=2.0, description="Sampling temperature")
    max_output_tokens: int = Field(2000, ge=100, le=32000, description="Completion token cap")

    # Pricing, USD per 1k tokens
    prompt_cost_per_1k: float = Field(0.00015, ge=0, description="Prompt token price per 1k")
    completion_cost_per_1k: float = Field(0.0006, ge=0, description="Completion token price per 1k")


class GenerationConfig(BaseModel):
    """Plan generation configuration"""
    schema_version: str = Field("v1", description="Plan schema version, folded into fingerprints")
    max_candidates: int = Field(40, ge=1, le=500, description="Candidates offered to the provider")
    strict_candidates: int = Field(15, ge=1, le=200, description="Candidates in the stricter pass")
    max_prompt_tokens: int = Field(3000, ge=200, le=100000, description="Prompt token budget")
    request_timeout_seconds: float = Field(60.0, gt=0, le=600, description="Overall request deadline")
    default_entries: int = Field(6, ge=1, le=30, description="Entries requested per plan")


class CatalogConfig(BaseModel):
    """Catalog data configuration"""
    exercises_path: Optional[Path] = Field(None, description="Exercise catalog override")
    foods_path: Optional[Path] = Field(None, description="Food catalog override")
    safety_rules_path: Optional[Path] = Field(None, description="YAML injury rules override")


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: str = Field("json", description="Log format (json or console)")
    file_path: Optional[Path] = Field(None, description="Log file path")
    max_size_mb: int = Field(100, ge=10, le=1000, description="Max log file size in MB")
    backup_count: int = Field(5, ge=1, le=30, description="Number of backup files")


class ServerConfig(BaseModel):
    """Server configuration"""
    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(8000, ge=1024, le=65535, description="Server port")
    workers: int = Field(1, ge=1, le=32, description="Number of worker processes")
    identity_header: str = Field("X-User-Id", description="Header carrying the verified identity")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")


# ============================================================================
# MAIN SETTINGS CLASS
# ============================================================================

class Settings(BaseSettings):
    """
    Main application settings - Single source of truth for all configuration

    This class loads configuration from:
    1. Environment variables (nested keys use ``__``, e.g. CACHE__FAST_TTL_SECONDS)
    2. .env file
    3. Default values
    4. Optional YAML safety rules file
    """

    # ========================================================================
    # APPLICATION SETTINGS
    # ========================================================================

    project_name: str = Field(
        "Plan Generation Gateway",
        description="Project name"
    )
    version: str = Field(
        "1.0.0",
        description="Application version"
    )
    description: str = Field(
        "Catalog-constrained workout and meal plan generation with tiered caching",
        description="Application description"
    )
    environment: Environment = Field(
        Environment.DEVELOPMENT,
        description="Application environment"
    )
    debug: bool = Field(
        False,
        description="Debug mode"
    )
    api_v1_prefix: str = Field(
        "/api/v1",
        description="Prefix for v1 routes"
    )

    # ========================================================================
    # NESTED CONFIGURATIONS
    # ========================================================================

    server: ServerConfig = ServerConfig()

    cache: CacheConfig = Field(
        default_factory=lambda: CacheConfig(
            redis=RedisConfig(url=os.getenv("REDIS_URL", "redis://localhost:6379/0"))
        )
    )

    rate_limit: RateLimitConfig = RateLimitConfig()

    provider: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            api_key=os.getenv("PROVIDER_API_KEY") or None
        )
    )

    generation: GenerationConfig = GenerationConfig()

    catalog: CatalogConfig = CatalogConfig()

    logging: LoggingConfig = LoggingConfig()

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        """Validate and normalize environment"""
        if isinstance(v, str):
            v = v.lower()
            if v == "prod":
                v = "production"
            elif v == "dev":
                v = "development"
            elif v == "test":
                v = "testing"
        return v

    # ========================================================================
    # SAFETY RULES
    # ========================================================================

    @property
    def safety_rules_dict(self) -> Dict[str, Any]:
        """Load the optional injury rules override from YAML"""
        path = self.catalog.safety_rules_path
        if path is None or not path.exists():
            return {}
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}

    # ========================================================================
    # SECRET PROPERTIES
    # ========================================================================

    @property
    def provider_api_key_value(self) -> Optional[str]:
        """Get provider API key value"""
        return self.provider.api_key.get_secret_value() if self.provider.api_key else None

    def durable_ttl_for(self, category: str) -> int:
        """Durable tier TTL for an intent category"""
        return self.cache.durable_ttl_by_category.get(
            category, self.cache.default_durable_ttl_seconds
        )

    # ========================================================================
    # MODEL CONFIG
    # ========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance

    Settings are read-only after initialization, so one validated instance
    is shared across the application.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Global settings instance - use this throughout the application
settings = get_settings()


# ============================================================================
# ENVIRONMENT-SPECIFIC OVERRIDES
# ============================================================================

def configure_production_settings():
    """Apply production-specific overrides"""
    if settings.environment.is_production():
        settings.debug = False
        settings.logging.level = LogLevel.INFO
        settings.cache.enabled = True
        settings.rate_limit.enabled = True


def configure_development_settings():
    """Apply development-specific overrides"""
    if settings.environment.is_development():
        settings.debug = True
        settings.logging.level = LogLevel.DEBUG
        settings.logging.format = "console"


def configure_testing_settings():
    """Apply testing-specific overrides"""
    if settings.environment.is_testing():
        settings.debug = True
        settings.logging.level = LogLevel.WARNING
        settings.cache.durable_backend = StoreBackend.MEMORY
        settings.rate_limit.backend = StoreBackend.MEMORY
        settings.provider.max_retries = 1
        settings.provider.retry_backoff_seconds = 0.0


# Apply environment-specific configurations
configure_production_settings()
configure_development_settings()
configure_testing_settings()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "Environment",
    "LogLevel",
    "StoreBackend",
    "RedisConfig",
    "CacheConfig",
    "RateLimitConfig",
    "ProviderConfig",
    "GenerationConfig",
    "CatalogConfig",
    "LoggingConfig",
    "ServerConfig",
]
