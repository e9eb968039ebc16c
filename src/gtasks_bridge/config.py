"""Configuration management for the bridge."""

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        env_parse_none_str="",
    )

    # Asana Configuration
    asana_access_token: str = Field(
        ...,
        validation_alias=AliasChoices("asana_access_token", "asana_pat"),
        description="Asana Personal Access Token",
    )
    asana_project_gid: str = Field(
        ...,
        validation_alias=AliasChoices("asana_project_gid", "project_me_gid"),
        description="GID of the Asana project kept in sync",
    )

    # Google Tasks Configuration
    google_client_secret_path: Path = Field(
        default=Path("client_secret.json"), description="OAuth client secret downloaded from Google Cloud"
    )
    google_token_path: Path = Field(
        default=Path("token_cache.json"), description="Writable location of the cached OAuth token"
    )
    google_tasklist_title: str = Field(
        default="Asana", description="Title of the Google task list kept in sync"
    )
    google_tasklist_id: str | None = Field(
        default=None, description="Explicit Google task list id (skips lookup by title)"
    )

    # Persistence
    correlation_db_path: Path = Field(
        default=Path(".gtasks_bridge") / "correlations.sqlite",
        description="SQLite file holding the correlation records",
    )

    # Scheduling
    poll_interval_seconds: int = Field(default=10, description="Seconds between sync cycles")
    shutdown_timeout: int = Field(
        default=60, description="Maximum seconds to wait for an in-flight cycle during shutdown"
    )

    # Due dates
    due_date_timezone: str = Field(
        default="UTC", description="Timezone used to turn Asana due_at timestamps into dates"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or console")

    @field_validator("poll_interval_seconds")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        return value

    @field_validator("due_date_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @field_validator("log_format")
    @classmethod
    def _known_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @property
    def pid_file(self) -> Path:
        """PID file kept next to the correlation database."""
        return self.correlation_db_path.parent / "bridge.pid"


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
