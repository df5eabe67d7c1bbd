"""
Redbook Automator - Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment variable handling.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="REDBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===========================================
    # Browser Session
    # ===========================================
    profile_dir: str = Field(
        default="./data/user_data",
        description="Persistent browser profile (cookies, local storage) shared by both engines",
    )
    headless: bool = Field(default=False, description="Run the browser without a window")
    locale: str = Field(default="zh-CN", description="Browser locale")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User agent presented to the site",
    )
    viewport_width: int = Field(default=1280, description="Viewport width in pixels")
    viewport_height: int = Field(default=800, description="Viewport height in pixels")
    navigation_timeout: int = Field(default=60000, description="Navigation timeout in milliseconds")

    @property
    def profile_path(self) -> Path:
        """Get the browser profile directory as Path object."""
        return Path(self.profile_dir)

    # ===========================================
    # Extraction
    # ===========================================
    ready_timeout: int = Field(
        default=15000,
        description="Bounded wait for the note page to render, in milliseconds",
    )
    manual_login_window: int = Field(
        default=120000,
        description="How long extraction waits for a manual login, in milliseconds",
    )
    refresh_pause: float = Field(
        default=2.0,
        description="Pause in seconds before reloading after a login",
    )
    min_image_dimension: int = Field(
        default=200,
        description="Images at or below this size in both dimensions are treated as icons",
    )

    # ===========================================
    # Publication
    # ===========================================
    publish_url: str = Field(
        default="https://creator.xiaohongshu.com/publish/publish",
        description="Creator center publish page",
    )
    publish_path_segment: str = Field(default="publish", description="URL segment of the publish page")
    login_path_segment: str = Field(default="login", description="URL segment of the login page")
    settle_interval: float = Field(
        default=5.0,
        description="Seconds to let the site process an upload",
    )
    max_upload_attempts: int = Field(default=3, description="Upload attempts before giving up")
    retry_wait: float = Field(default=2.0, description="Seconds between upload attempts")
    login_poll_interval: float = Field(default=2.0, description="Seconds between login checks")
    login_wait_timeout: float = Field(
        default=0.0,
        description="Upper bound for the publish login wait in seconds (0 waits until aborted)",
    )
    dialog_timeout: int = Field(default=15000, description="File dialog wait in milliseconds")
    field_timeout: int = Field(default=5000, description="Form field wait in milliseconds")
    tab_switch_pause: float = Field(default=2.0, description="Seconds to let the tab switch render")

    # ===========================================
    # Application Settings
    # ===========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is uppercase."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("max_upload_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """At least one upload attempt is always made."""
        if v < 1:
            raise ValueError("max_upload_attempts must be at least 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are loaded only once.

    Returns:
        Settings instance with loaded configuration.
    """
    return Settings()
