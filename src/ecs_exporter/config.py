"""
Exporter settings.

Loaded from the environment with the ECS_EXPORTER_ prefix (and an optional
.env file). Timing values are in seconds.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ecs_exporter.core.errors import ConfigurationError

# Well-known scrape port for this exporter
DEFAULT_LISTEN_PORT = 9102

# ECS API batch limits
MAX_DESCRIBE_SERVICES = 10
MAX_DESCRIBE_TASKS = 100
MAX_LIST_RESULTS = 100


class Settings(BaseSettings):
    """Exporter settings."""

    model_config = SettingsConfigDict(
        env_prefix="ECS_EXPORTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # AWS
    aws_region: str = "us-east-1"
    aws_endpoint_url: str | None = None

    # HTTP
    listen_host: str = "0.0.0.0"
    listen_port: int = Field(default=DEFAULT_LISTEN_PORT, ge=1, le=65535)

    # Polling
    poll_interval: float = Field(default=30.0, gt=0)
    cluster_names: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Clusters to poll; discovers every cluster in the region when empty",
    )
    describe_batch_size: int = Field(default=MAX_DESCRIBE_SERVICES, ge=1, le=MAX_DESCRIBE_SERVICES)
    task_batch_size: int = Field(default=MAX_DESCRIBE_TASKS, ge=1, le=MAX_DESCRIBE_TASKS)
    max_concurrent_clusters: int = Field(default=4, ge=1)

    # Rate limiting and retries
    rate_limit_per_second: float = Field(default=20.0, gt=0)
    rate_limit_burst: int = Field(default=20, ge=1)
    retry_max_attempts: int = Field(default=4, ge=1)
    retry_backoff_base: float = Field(default=0.5, ge=0)
    retry_backoff_max: float = Field(default=8.0, ge=0)
    api_timeout: float = Field(default=10.0, gt=0)

    # Deadlines
    cluster_deadline: float = Field(default=20.0, gt=0)
    cycle_deadline: float = Field(default=25.0, gt=0)
    staleness_threshold: float | None = Field(
        default=None,
        gt=0,
        description="Seconds without a fresh snapshot before /health fails; 3x poll_interval if unset",
    )

    # Container metrics pass-through
    container_metrics_label: str | None = None
    docker_socket: str = "/var/run/docker.sock"
    container_metrics_timeout: float = Field(default=5.0, gt=0)

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("cluster_names", mode="before")
    @classmethod
    def _split_cluster_names(cls, value: object) -> object:
        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return value

    @model_validator(mode="after")
    def _check_deadlines(self) -> Settings:
        if self.cycle_deadline >= self.poll_interval:
            raise ValueError("cycle_deadline must be shorter than poll_interval")
        if self.cluster_deadline > self.cycle_deadline:
            raise ValueError("cluster_deadline must not exceed cycle_deadline")
        return self

    @property
    def effective_staleness_threshold(self) -> float:
        if self.staleness_threshold is not None:
            return self.staleness_threshold
        return 3 * self.poll_interval


def load_settings(**overrides: object) -> Settings:
    """Build settings, turning validation failures into ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid exporter configuration",
            details={"errors": exc.error_count(), "reason": str(exc)},
        ) from exc


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
