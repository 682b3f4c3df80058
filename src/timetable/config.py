"""Timetable configuration loaded from environment variables.

Every setting can be overridden with an environment variable of the same
name (case-insensitive) or from a .env file in the working directory.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_ASSETS = [
    ".",
    "index.html",
    "style.css",
    "script.js",
    "manifest.json",
    "icon-192.png",
    "icon-512.png",
]


class TimetableConfig(BaseSettings):
    """Timetable configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Local key-value store
    data_dir: str = Field(
        default="data/storage",
        description="Directory holding the local key-value store",
    )
    schedule_slot: str = Field(
        default="schedule",
        description="Name of the slot that holds the serialized schedule",
    )

    # Offline asset cache
    cache_dir: str = Field(
        default="data/cache",
        description="Directory holding versioned asset caches",
    )
    cache_name: str = Field(
        default="schedule-pwa-v1",
        description="Current cache version; bumping it invalidates older caches",
    )
    asset_base_url: str = Field(
        default="http://localhost:8000/",
        description="Origin the static application files are served from",
    )
    assets: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ASSETS),
        description="Static files pre-cached on install (JSON list in env)",
    )
    fallback_page: str = Field(
        default="index.html",
        description="Cached page served when a navigation fails offline",
    )
    fetch_attempts: int = Field(
        default=3,
        description="Attempts per network request before giving up",
    )
    fetch_backoff_seconds: float = Field(
        default=0.5,
        description="Fixed wait between network attempts",
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for a single network request",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: TimetableConfig | None = None


def get_config() -> TimetableConfig:
    """Get the timetable configuration singleton.

    Returns:
        TimetableConfig: Timetable configuration instance
    """
    global _config
    if _config is None:
        _config = TimetableConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
