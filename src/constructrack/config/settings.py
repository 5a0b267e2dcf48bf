"""Constructrack configuration settings using pydantic-settings."""

from functools import cached_property
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the Constructrack field agent.

    Settings are loaded from environment variables with the CONSTRUCTRACK_ prefix.
    For example, CONSTRUCTRACK_DRAIN_INTERVAL=30 sets drain_interval to 30.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONSTRUCTRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    server_url: str = "http://localhost:8000"
    upload_timeout: float = 30.0  # seconds per delivery attempt

    # Queue settings
    drain_interval: float = 15.0  # seconds between drains while items are pending
    max_concurrency: int = 4  # parallel uploads within one drain

    # Connectivity probing
    probe_interval: float = 10.0
    probe_timeout: float = 5.0

    # File paths
    data_dir: Path = Path("~/.local/share/constructrack")
    queue_db_name: str = "queue.db"

    # Logging
    log_level: str = "INFO"
    device_id: str | None = None  # added to every log record
    log_file: Path | None = None

    @field_validator("upload_timeout", "drain_interval", "probe_interval", "probe_timeout")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Ensure timeouts and intervals are positive."""
        if v <= 0:
            raise ValueError("intervals and timeouts must be greater than 0 seconds")
        return v

    @field_validator("max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, v: int) -> int:
        """Ensure at least one upload can run."""
        if v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @cached_property
    def data_path(self) -> Path:
        """Return expanded data directory path."""
        return self.data_dir.expanduser()

    @cached_property
    def queue_db_path(self) -> Path:
        """Return the path of the SQLite queue database."""
        return self.data_path / self.queue_db_name
