"""
Configuration settings for the Amplicon Workflow Router.

This module provides centralized application configuration using
pydantic-settings for environment variables, file-based configuration,
and defaults. Pipeline parameters (what to run) live in
``config.parameters``; these settings describe how the router itself
behaves (logging, concurrency, notification delivery).
"""

import os
import json
from pathlib import Path
from typing import Optional
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ComputeSettings(BaseModel):
    """Executor resource settings."""

    # Stages running at the same time
    max_workers: int = Field(default_factory=lambda: os.cpu_count() or 4, ge=1)

    # Shell used to run stage command templates
    shell: str = "/bin/bash"

    # Lines of tool stderr carried in an ExternalToolError
    stderr_tail_lines: int = Field(default=40, ge=1)

    # Seconds between SIGTERM and SIGKILL when a run is aborted
    kill_timeout: float = Field(default=10.0, ge=0)


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"
    log_file: Optional[Path] = None
    log_rotation: str = "10 MB"
    log_retention: str = "1 month"
    enable_json_logging: bool = False

    @field_validator("level")
    @classmethod
    def normalise_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class NotificationSettings(BaseModel):
    """Completion e-mail settings."""

    sendmail_binary: str = "sendmail"
    sender: str = "amplicon-router@localhost"
    plaintext_email: bool = False
    summary_filename: str = "run_summary.json"


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="AMPLICON_ROUTER_",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application metadata
    app_name: str = "Amplicon Workflow Router"
    app_version: str = "1.0.0"
    debug: bool = False

    # Configuration sections
    compute: ComputeSettings = Field(default_factory=ComputeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)

    def save_config(self, path: Path) -> None:
        """Save current configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.model_dump(), f, indent=2, default=str)

    @classmethod
    def load_config(cls, path: Path) -> "Settings":
        """Load configuration from file."""
        with open(path, 'r') as f:
            config_data = json.load(f)
        return cls(**config_data)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def create_environment_config(environment: str = "production") -> Settings:
    """Create environment-specific configuration."""
    if environment == "development":
        return Settings(
            debug=True,
            logging=LoggingSettings(level="DEBUG"),
            compute=ComputeSettings(max_workers=2),
        )
    elif environment == "cluster":
        return Settings(
            compute=ComputeSettings(max_workers=16),
            logging=LoggingSettings(enable_json_logging=True),
        )
    else:
        return Settings()
