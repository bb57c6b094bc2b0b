"""
Application settings management.

Loads configuration from environment variables (and an optional .env file)
and derives the storage paths used by the local store and content cache.
"""

import os
from pathlib import Path
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "bibsync"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="localhost", description="API server host")
    api_port: int = Field(default=8120, description="API server port")

    # Storage Configuration
    data_dir: Path = Field(
        default_factory=_default_data_dir,
        description="Root directory for local state"
    )
    database_path: Optional[Path] = Field(
        default=None,
        description="SQLite database file (defaults to <data_dir>/library.db)"
    )
    cache_dir: Optional[Path] = Field(
        default=None,
        description="Content cache root (defaults to <data_dir>/cache)"
    )

    # Identity
    user_id: str = Field(default="local-user", description="Active principal for authored records")

    # Remote Authority Configuration
    remote_api_url: str = Field(
        default="http://localhost:8080/api",
        description="Base URL of the remote authority"
    )
    remote_api_token: Optional[str] = Field(default=None, description="Bearer token for the remote authority")

    # File Store Configuration
    file_store_api_url: str = Field(
        default="https://www.googleapis.com/drive/v3",
        description="Metadata endpoint of the file store"
    )
    file_store_upload_url: str = Field(
        default="https://www.googleapis.com/upload/drive/v3",
        description="Upload endpoint of the file store"
    )
    file_store_access_token: Optional[str] = Field(default=None, description="OAuth access token for the file store")

    # Retry / Sync Configuration
    request_timeout_seconds: float = Field(default=30.0, description="Timeout for a single remote request")
    retry_max_attempts: int = Field(default=5, ge=0, description="Extra attempts for a single remote call")
    retry_base_delay_seconds: float = Field(default=1.0, ge=0, description="Base delay of the call-level backoff")
    queue_max_retries: int = Field(default=5, ge=1, description="Retries before a queue entry is marked failed")
    sync_interval_seconds: int = Field(default=300, ge=1, description="Interval between scheduled sync passes")
    auto_sync: bool = Field(default=False, description="Run the sync scheduler with the API server")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(
        default_factory=lambda: _default_data_dir() / "logs" / "bibsync.log",
        description="Path to log file"
    )

    # Application version
    version: str = Field(default="0.1.0", description="Backend version")

    @field_validator("data_dir", "database_path", "cache_dir", "log_file", mode="before")
    @classmethod
    def expand_path(cls, v):
        """Expand user home directory in paths."""
        if v is None:
            return v
        path_str = str(v)
        if path_str.startswith("~"):
            path_str = os.path.expanduser(path_str)
        return Path(path_str)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @property
    def resolved_database_path(self) -> Path:
        """SQLite file location, falling back to the data directory."""
        return self.database_path or self.data_dir / "library.db"

    @property
    def resolved_cache_dir(self) -> Path:
        """Content cache root, falling back to the data directory."""
        return self.cache_dir or self.data_dir / "cache"

    def ensure_directories(self):
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.resolved_database_path.parent.mkdir(parents=True, exist_ok=True)
        self.resolved_cache_dir.mkdir(parents=True, exist_ok=True)

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Creates and caches the settings on first call.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings():
    """Reset the global settings instance (mainly for testing)."""
    global _settings
    _settings = None
