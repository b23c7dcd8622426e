"""Harness settings with Pydantic validation and environment loading."""

from __future__ import annotations

import tempfile
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Harness settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Server under test
    image: str = Field(
        default="signalk/signalk-server:latest",
        alias="SIGNALK_IMAGE",
        description="Docker image reference of the server under test",
    )
    container_name_prefix: str = Field(default="signalk-test")
    data_dir_root: str = Field(
        default_factory=tempfile.gettempdir,
        description="Parent directory for per-run working directories",
    )
    settings_template: Optional[str] = Field(
        default=None,
        description="Optional settings.json copied into the working directory",
    )

    # Host port bindings
    http_port: int = Field(default=3000, ge=1, le=65535)
    https_port: int = Field(default=3443, ge=1, le=65535)
    tcp_port: int = Field(default=10110, ge=1, le=65535)
    udp_port: int = Field(default=10111, ge=1, le=65535)
    n2k_port: int = Field(default=2597, ge=1, le=65535)

    # Docker engine
    docker_host: str = Field(
        default="unix:///var/run/docker.sock",
        alias="DOCKER_HOST",
        description="Engine endpoint (unix:// socket or tcp://host:port)",
    )
    docker_timeout: float = Field(default=30.0, gt=0)

    # Readiness (seconds)
    start_timeout: float = Field(default=60.0, gt=0)
    readiness_interval: float = Field(default=1.0, gt=0)
    readiness_request_timeout: float = Field(default=5.0, gt=0)
    readiness_require_tcp: bool = Field(
        default=True,
        description="Also wait for the NMEA TCP port after HTTP readiness",
    )
    startup_log_tail: int = Field(default=500, ge=0)

    # Log classification
    max_log_entries: int = Field(default=10000, ge=1)
    extra_ignore_patterns: List[str] = Field(default_factory=list)

    # Traffic
    feeder_host: str = Field(default="localhost")
    feeder_delay: float = Field(default=0.1, ge=0)
    feeder_timeout: float = Field(default=10.0, gt=0)
    feeder_batch_size: int = Field(default=50, ge=1)
    settle_delay: float = Field(default=2.0, ge=0)

    # Reporting
    report_dir: str = Field(default="test-results/logs")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return lower


@lru_cache
def get_settings() -> Settings:
    """Cached settings factory."""
    return Settings()
