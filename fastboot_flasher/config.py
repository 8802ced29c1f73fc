"""Configuration settings for fastboot_flasher.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_12_6) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/12.0.3 Safari/605.1.15"
)


def _default_download_dir() -> Path:
    """Return the default image download directory."""
    return Path.home() / ".cache" / "fastboot-flasher" / "images"


def _default_erase_partitions() -> list[str]:
    """Return the partitions erased before flashing."""
    return ["dtbo", "boot", "cache", "userdata"]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the FBFLASH_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="FBFLASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    fastboot_path: Path | None = Field(
        default=None,
        description="Explicit fastboot binary (probed locations are used if not set)",
    )
    download_dir: Path = Field(
        default_factory=_default_download_dir,
        description="Root directory for downloaded and extracted images",
    )
    manifest_source: str | None = Field(
        default=None,
        description="URL or file path of the image manifest",
    )

    # Operational modes
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Downloads
    max_concurrent_downloads: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum concurrent image downloads",
    )
    download_max_retries: int = Field(
        default=5,
        ge=0,
        description="Retries for transient network failures",
    )
    download_retry_delay: float = Field(
        default=2.0,
        ge=0,
        description="Delay in seconds before each download retry",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Connect/read timeout in seconds for HTTP requests",
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent header sent with downloads",
    )
    remove_partial_on_stop: bool = Field(
        default=False,
        description="Delete the partial file when a download is stopped",
    )
    remove_partial_on_fail: bool = Field(
        default=False,
        description="Delete the partial file when a download fails",
    )
    allowed_download_domains: list[str] = Field(
        default_factory=list,
        description="Domains downloads may target (empty allows any)",
    )
    mirror_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for one mirror speed test",
    )

    # Flashing
    command_timeout: int = Field(
        default=120,
        ge=1,
        description="Timeout in seconds for a single fastboot command",
    )
    min_image_size: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Smallest image size in bytes accepted for flashing",
    )
    max_image_size: int = Field(
        default=10 * 1024 * 1024 * 1024,
        ge=1,
        description="Image size in bytes above which a warning is logged",
    )
    erase_partitions: list[str] = Field(
        default_factory=_default_erase_partitions,
        description="Partitions erased (best-effort) before flashing",
    )

    # Caching (in seconds)
    scan_cache_ttl: float = Field(
        default=5.0,
        ge=0,
        description="Lifetime of a cached device scan",
    )
    manifest_cache_ttl: float = Field(
        default=24 * 60 * 60,
        ge=0,
        description="Lifetime of a cached manifest",
    )
    mirror_cache_ttl: float = Field(
        default=30 * 60,
        ge=0,
        description="Lifetime of a cached mirror speed test",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_USER_AGENT", "Settings", "get_settings", "print_settings_json"]
