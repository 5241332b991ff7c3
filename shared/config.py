"""
Shared configuration management for the policy decision service.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with an ``ACCESS_``-prefixed environment
    variable, e.g. ``ACCESS_REDIS_URL``.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backing services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/access")
    cache_backend: Literal["memory", "redis"] = Field(default="memory")
    store_backend: Literal["memory", "postgres"] = Field(default="memory")

    # Policy evaluation
    permission_cache_ttl_seconds: int = Field(default=300, ge=1)
    plan_cache_ttl_seconds: int = Field(default=300, ge=1)
    evaluation_timeout_seconds: float = Field(default=5.0, gt=0)
    usage_timezone: str = Field(default="UTC")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
