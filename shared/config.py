"""
Shared configuration management for the FPL data cache.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheConfig(BaseSettings):
    """Cache configuration read from the environment (or a local .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment")
    log_level: str = Field(default="info", description="Root log level")
    json_logs: bool = Field(default=True, description="Render logs as JSON")

    # Shared tier
    redis_url: str = Field(default="redis://localhost:6379/0", description="Shared tier connection URL")
    redis_socket_timeout: float = Field(default=5.0, description="Per-command socket timeout (seconds)")
    redis_connect_timeout: float = Field(default=10.0, description="Connect timeout (seconds)")

    # Local tier
    memory_cache_enabled: bool = Field(default=True, description="Check/populate the in-process tier")
    memory_cache_max_entries: int = Field(default=5000, ge=1)
    memory_cache_max_memory_mb: float = Field(default=100, gt=0)
    memory_cache_default_ttl: float = Field(default=300, gt=0, description="Local TTL when none is given (seconds)")
    memory_cache_ttl_factor: float = Field(default=0.8, description="Local TTL as a fraction of the shared TTL")
    memory_cache_ttl_cap: float = Field(default=1800, gt=0, description="Ceiling on local TTL (seconds)")
    memory_cache_sweep_interval: float = Field(default=60, gt=0, description="Expired-entry sweep period (seconds)")
    memory_cache_namespace: str = Field(default="fpl")
    debug_memory_cache: bool = Field(default=False)

    # Observability
    metrics_enabled: bool = Field(default=True)

    @field_validator("memory_cache_ttl_factor")
    @classmethod
    def _check_ttl_factor(cls, value: float) -> float:
        # Local copies must expire no later than the shared copy
        if not 0 < value <= 1:
            raise ValueError("memory_cache_ttl_factor must be in (0, 1]")
        return value


def get_config(**overrides) -> CacheConfig:
    """Get cache configuration, with optional explicit overrides."""
    return CacheConfig(**overrides)
