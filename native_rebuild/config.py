"""Configuration settings for native_rebuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default toolchain bundle cache directory."""
    return Path.home() / ".cache" / "native-rebuild" / "toolchains"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the NATIVE_REBUILD_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="NATIVE_REBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Shared cache for runtime headers and compiler bundles",
    )

    # Runtime distribution
    headers_url: str = Field(
        default="https://www.electronjs.org/headers",
        description="Base URL serving runtime header and toolchain archives",
    )
    runtime_name: str = Field(
        default="electron",
        description="Runtime name passed to prebuilt binary downloaders",
    )

    # External tools
    node_gyp: str = Field(
        default="node-gyp",
        description="Command used to compile native addons",
    )
    prebuild_install: str = Field(
        default="prebuild-install",
        description="Command used to fetch prebuilt native binaries",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - do not download toolchain bundles",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum concurrent module builds",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for toolchain bundle downloads",
    )
    build_timeout: int = Field(
        default=1800,
        ge=10,
        description="Timeout for a single module build",
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


__all__ = ["Settings", "get_settings", "print_settings_json"]
