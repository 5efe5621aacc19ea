"""
TreeWatch Configuration Module.

Centralizes all configuration settings using Pydantic Settings.
Requires Python 3.11+.
"""

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file into os.environ at module import time
# This ensures nested BaseSettings classes can read the values
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    # Try current working directory
    load_dotenv()


DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    r"^\.",
    r"^node_modules$",
    r"^\$RECYCLE\.BIN$",
    r"^System Volume Information$",
)


class WatcherSettings(BaseSettings):
    """Directory watcher configuration settings."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_")

    debounce_delay_ms: int = Field(default=100, ge=0, le=60_000)
    recovery_backoff_ms: int = Field(default=1000, ge=0, le=600_000)
    recovery_max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Give up recovering a failed watch after this many retries (None = never)",
    )

    ignore_patterns: list[str] = Field(
        default=list(DEFAULT_IGNORE_PATTERNS),
        description="Regular expressions matched against a path's final name component",
    )

    use_polling: bool = Field(default=False, description="Use watchdog's polling observer")
    poll_interval_seconds: float = Field(default=1.0, gt=0.0)
    join_timeout_seconds: float = Field(default=5.0, ge=0.0)

    @field_validator("ignore_patterns", mode="before")
    @classmethod
    def parse_ignore_patterns(cls, v: str | list[str]) -> list[str]:
        """Parse ignore patterns from comma-separated string or list."""
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="json")  # "json" or "console"
    file_path: Path | None = Field(default=None)


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="TreeWatch")
    app_version: str = Field(default="0.1.0")

    # Sub-settings
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns singleton instance of Settings for performance.
    """
    return Settings()
