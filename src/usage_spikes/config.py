"""Configuration management for the usage spike service.

Provides typed settings using pydantic-settings with support for
environment variables and .env files.
"""

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from usage_spikes.models import DetectionConfig, GIB, MIB


class Settings(BaseSettings):
    """Application configuration settings.

    All settings can be overridden via environment variables or .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Redis Configuration
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    records_key_prefix: str = Field(
        default="usage:",
        description="Redis key prefix for per-device usage record sets"
    )
    alerts_channel: str = Field(
        default="usage-alerts",
        description="Redis Pub/Sub channel for alerts"
    )

    # Delivery Configuration
    suppression_seconds: int = Field(
        default=3600,
        description="Seconds an alert key stays suppressed after delivery",
        gt=0
    )
    min_notify_percentage: int = Field(
        default=50,
        description="Minimum percentage increase worth notifying about",
        ge=0
    )

    # Detection Configuration
    std_dev_multiplier: float = Field(
        default=2.0,
        description="Z-score cutoff for a statistical spike",
        ge=0
    )
    min_percentage_increase: float = Field(
        default=50,
        description="Percent above baseline that qualifies as a spike",
        ge=0
    )
    min_bytes_threshold: int = Field(
        default=50 * MIB,
        description="Noise floor in bytes",
        ge=0
    )
    baseline_window_days: int = Field(
        default=7,
        description="Days of history used as baseline",
        gt=0
    )
    critical_daily_threshold: int = Field(
        default=GIB,
        description="Daily usage ceiling in bytes",
        ge=0
    )
    high_hourly_threshold: int = Field(
        default=200 * MIB,
        description="Hourly usage ceiling in bytes",
        ge=0
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )

    # Application Configuration
    app_name: str = Field(
        default="usage-spikes",
        description="Application name"
    )
    environment: str = Field(
        default="development",
        description="Environment (development, staging, production, testing)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the expected values."""
        valid_envs = {"development", "staging", "production", "testing"}
        v_lower = v.lower()
        if v_lower not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v_lower

    def detection_config(self) -> DetectionConfig:
        """Build the default detection config from these settings."""
        return DetectionConfig(
            std_dev_multiplier=self.std_dev_multiplier,
            min_percentage_increase=self.min_percentage_increase,
            min_bytes_threshold=self.min_bytes_threshold,
            baseline_window_days=self.baseline_window_days,
            critical_daily_threshold=self.critical_daily_threshold,
            high_hourly_threshold=self.high_hourly_threshold
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance.

    Returns:
        Settings: The application settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from environment/file.

    Useful for testing or when environment variables change at runtime.

    Returns:
        Settings: The newly loaded settings instance
    """
    global _settings
    _settings = Settings()
    return _settings


def load_settings_from_file(filepath: str) -> Settings:
    """Load settings from a specific .env file.

    Args:
        filepath: Path to the .env file to load

    Returns:
        Settings: Settings loaded from the specified file

    Raises:
        FileNotFoundError: If the specified file doesn't exist
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Settings file not found: {filepath}")
    return Settings(_env_file=filepath)
