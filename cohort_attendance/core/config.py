# cohort_attendance/core/config.py
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables (or a local `.env` file)
    at runtime and cover:
    - DB connection
    - Zoom Server-to-Server OAuth credentials
    - Internal API key protecting the admin endpoints
    - Logging
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Cohort Attendance"
    APP_ENV: str = Field("local", description="Environment name: local/dev/stage/prod")

    LOG_LEVEL: str = Field("INFO", description="Root log level.")
    LOG_JSON: bool = Field(
        default=False,
        description="Render log events as JSON lines instead of console output.",
    )

    DB_URL: str = Field(
        "sqlite+aiosqlite:///./cohort_attendance.db",
        description="SQLAlchemy-compatible async database URL",
    )

    INTERNAL_API_KEY: str | None = Field(
        default=None,
        description="API key required for hitting /attendance endpoints",
    )

    # --- Zoom Server-to-Server OAuth ---
    ZOOM_ACCOUNT_ID: str | None = None
    ZOOM_CLIENT_ID: str | None = None
    ZOOM_CLIENT_SECRET: str | None = None
    ZOOM_BASE_URL: str = Field(
        default="https://api.zoom.us/v2",
        description="Base URL of the Zoom REST API.",
    )
    ZOOM_OAUTH_URL: str = Field(
        default="https://zoom.us/oauth/token",
        description="Zoom OAuth token endpoint.",
    )
    ZOOM_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to every outbound Zoom request.",
    )

    CLIFF_BULK_DELAY_SECONDS: float = Field(
        default=0.2,
        description="Pause between sessions during bulk cliff detection (Zoom rate limits).",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Using LRU cache ensures settings are read and validated only once,
    while still being easily importable across the app.
    """
    return Settings()
