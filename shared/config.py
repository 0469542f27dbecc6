"""
Shared configuration management for the tenant analytics gateway.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


class AnalyticsGatewayConfig(ServiceConfig):
    """Settings for the analytics query gateway."""

    service_name: str = "gateway"
    port: int = 8020

    # Relational store for roles, agency links, grants and audit rows.
    postgres_dsn: Optional[str] = Field(default=None)
    seed_file: Optional[str] = Field(default=None)

    # Warehouse
    clickhouse_url: str = Field(default="http://localhost:8123")
    clickhouse_database: str = Field(default="default")
    warehouse_table: str = Field(default="client_reports.aso_all_apple")
    warehouse_timeout_seconds: float = Field(default=10.0, gt=0)

    # Identity
    jwks_url: str = Field(default="http://localhost:8080/realms/analytics/protocol/openid-connect/certs")
    jwks_audience: Optional[str] = Field(default=None)
    jwks_issuer: Optional[str] = Field(default=None)

    # Result cache
    cache_ttl_seconds: float = Field(default=30.0, gt=0)
    cache_max_entries: int = Field(default=512, ge=1)
    cache_sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Audit
    audit_timeout_seconds: float = Field(default=2.0, gt=0)


def get_gateway_config(**overrides) -> AnalyticsGatewayConfig:
    """Load gateway settings from the environment, applying explicit overrides."""
    return AnalyticsGatewayConfig(**overrides)
