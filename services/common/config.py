from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "inventory-service"


class ServiceSettings(BaseSettings):
    """Settings for the inventory service and its background jobs."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    catalog_service_url: str | None = Field(default=None)
    catalog_timeout_seconds: float = Field(default=2.0, gt=0.0)
    operation_timeout_seconds: float | None = Field(default=5.0, gt=0.0)
    reservation_ttl_seconds: int = Field(default=900, ge=1)
    reservation_sweep_enabled: bool = Field(default=True)
    reservation_sweep_interval_seconds: float = Field(default=30.0, gt=0.0)
    reservation_sweep_batch_size: int = Field(default=100, ge=1)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="INVENTORY_", extra="ignore"
    )


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
