from typing import Tuple

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field

load_dotenv()


DEFAULT_CALL_ID_PATTERN = r"^[A-Za-z0-9-]*[0-9][A-Za-z0-9-]*$"


class Settings(BaseSettings):
    """Base settings for the application."""

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "Recording Index"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "Incremental call-recording indexer and query API"

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    DATABASE_URL: str = ""
    LOCAL_SQLITE_PATH: str = "sqlite+aiosqlite:///./recindex.db"
    DATABASE_POOL_SIZE: int = Field(default=10, ge=1)

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """Resolve the database URL for the application.

        Priority:
        1. Explicit DATABASE_URL (Postgres, SQLite, etc.)
        2. Local SQLite fallback for development: LOCAL_SQLITE_PATH
        """
        if self.DATABASE_URL and self.DATABASE_URL.strip():
            return self.DATABASE_URL.strip()
        if self.LOCAL_SQLITE_PATH and self.LOCAL_SQLITE_PATH.strip():
            return self.LOCAL_SQLITE_PATH.strip()
        return "sqlite+aiosqlite:///./recindex.db"

    # Recording storage (one sub-directory per agent)
    RECORDINGS_ROOT: str = Field(default="recordings", description="Root directory holding one folder per agent")
    RECORDING_EXTENSIONS: str = Field(default=".wav,.mp3,.ogg,.gsm,.m4a", description="Comma separated list")

    # Filename parsing
    RECORDING_TIMEZONE: str = Field(default="UTC", description="Zone the filename timestamps are written in")
    CALL_ID_PATTERN: str = DEFAULT_CALL_ID_PATTERN

    # Pipeline
    BATCH_SIZE: int = Field(default=500, ge=1, le=5000)
    WORKER_POOL_SIZE: int = Field(default=4, ge=1)
    JOB_TIMEOUT_SECONDS: float = Field(default=900.0, gt=0)
    LEASE_SECONDS: float = Field(default=1800.0, gt=0)
    RETRY_BACKOFF_BASE_SECONDS: float = Field(default=60.0, ge=0)
    RETRY_BACKOFF_MAX_SECONDS: float = Field(default=3600.0, ge=0)

    # Deletion reconciliation cadence
    RECONCILE_INTERVAL_SECONDS: float = Field(default=3600.0, ge=0)
    RECONCILE_WINDOW_DAYS: int = Field(default=0, ge=0, description="0 disables the rolling window")
    FULL_RECONCILE_INTERVAL_SECONDS: float = Field(default=86400.0, ge=0)

    # Retention of soft-deleted rows
    RETENTION_DAYS: int = Field(default=90, ge=0)

    # Query service
    QUERY_DEFAULT_LIMIT: int = Field(default=50, ge=1)
    QUERY_MAX_LIMIT: int = Field(default=500, ge=1)
    PLAYBACK_URL_PREFIX: str = "/media/recordings"

    @property
    def recording_extensions(self) -> Tuple[str, ...]:
        """Normalised lower-case extensions, each with a leading dot."""
        parts = [part.strip().lower() for part in self.RECORDING_EXTENSIONS.split(",") if part.strip()]
        return tuple(part if part.startswith(".") else f".{part}" for part in parts)


settings = Settings()
