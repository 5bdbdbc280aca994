"""Configuration management for Site Deployer."""

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMATS = ("json", "console")


class Settings(BaseSettings):
    """Deployer configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SITE_DEPLOYER_",
        case_sensitive=False,
        extra="ignore",
    )

    # Server configuration
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"), description="Server host")
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8888")), description="Server port")
    workers: int = Field(1, description="Number of worker processes")
    reload: bool = Field(False, description="Enable auto-reload in development")

    # Deployment
    root: str = Field("./site", description="Root directory that deployments are confined to")
    max_size_mb: int = Field(2, description="Maximum size of an uploaded artifact in MB")
    history_size: int = Field(100, description="Number of finished transactions kept in memory")
    purge_on_startup: bool = Field(
        True,
        description="Remove staging leftovers of crashed runs under root at startup",
    )

    # Observability
    log_level: str = Field("INFO", description="Log level")
    log_format: str = Field("json", description="Log renderer: json or console")
    metrics_enabled: bool = Field(True, description="Expose Prometheus metrics on /metrics")

    @field_validator("root")
    @classmethod
    def make_root_absolute(cls, v: str) -> str:
        """Deployments are always resolved against an absolute root."""
        return str(Path(v).expanduser().absolute())

    @field_validator("max_size_mb", "history_size")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
        return v

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024
