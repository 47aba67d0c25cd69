"""Application settings using Pydantic."""
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///interest_enricher.db",
        description="SQLAlchemy database URL",
    )

    # Facebook Marketing API
    facebook_access_token: Optional[str] = Field(
        default=None,
        description="Access token for the Graph API ad-interest search",
    )
    facebook_api_version: str = Field(
        default="v18.0",
        description="Graph API version segment",
    )
    facebook_search_limit: int = Field(
        default=15,
        description="Maximum candidates requested per search",
    )
    facebook_locale: Optional[str] = Field(
        default=None,
        description="Optional locale passed to the search endpoint (e.g. fr_FR)",
    )
    request_timeout_seconds: int = Field(
        default=30,
        description="Total timeout for a single search request",
    )

    # Throttling between requests (overridable through app settings)
    facebook_batch_size: int = Field(
        default=100,
        description="Requests allowed before a throttle pause",
    )
    facebook_pause_ms: int = Field(
        default=5000,
        description="Pause length once the batch size is reached (ms)",
    )

    # Pipeline
    max_concurrency: int = Field(
        default=5,
        description="Items processed in parallel per job run",
    )
    max_retries: int = Field(
        default=3,
        description="Attempts per item before it is marked failed",
    )
    recovery_policy: Literal["pause", "resume"] = Field(
        default="pause",
        description="What to do at startup with jobs left in processing",
    )

    # Cache
    memory_cache_ttl_seconds: int = Field(
        default=300,
        description="In-process cache lifetime (seconds)",
    )
    db_cache_ttl_hours: int = Field(
        default=24,
        description="Persistent cache lifetime (hours)",
    )

    # Scheduler intervals
    cache_cleanup_interval_minutes: int = Field(
        default=60,
        description="How often expired cache rows are purged (minutes)",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[str] = Field(
        default=None,
        description="Optional rotating log file path",
    )
    search_call_log_file: Optional[str] = Field(
        default=None,
        description="Optional JSON-lines file for search call records (stderr when unset)",
    )

    # Paths
    config_dir: Path = Field(
        default=Path(__file__).parent,
        description="Configuration directory",
    )

    @property
    def project_root(self) -> Path:
        """Project root directory."""
        return self.config_dir.parent

    @property
    def memory_cache_ttl(self) -> float:
        return float(self.memory_cache_ttl_seconds)

    @property
    def db_cache_ttl(self) -> float:
        """Persistent cache TTL in seconds."""
        return float(self.db_cache_ttl_hours * 3600)


# Global settings instance
settings = Settings()
