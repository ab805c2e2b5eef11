"""Configuration settings for godwoken_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default component cache directory."""
    return Path.home() / ".cache" / "godwoken-imagegen" / "components"


def _default_logs_dir() -> Path:
    """Return the default directory for toolchain logs."""
    return Path.home() / ".local" / "share" / "godwoken-imagegen" / "logs"


def _default_db_url() -> str:
    """Return the default cache index URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "godwoken-imagegen" / "cache.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the GW_IMG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="GW_IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    workspace: Path = Field(
        default_factory=Path.cwd,
        description="Root of the checkout that holds the component sources",
    )
    manifest_path: Path = Field(
        default=Path("components.yaml"),
        description="Version manifest, relative to the workspace if not absolute",
    )
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for cached component artifacts",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Cache index database URL",
    )
    logs_dir: Path = Field(
        default_factory=_default_logs_dir,
        description="Directory for per-component toolchain logs",
    )
    context_dir: Path | None = Field(
        default=None,
        description="Image build context (defaults to <workspace>/build/image-context)",
    )
    dockerfile: Path = Field(
        default=Path("docker/Dockerfile"),
        description="Dockerfile, relative to the workspace if not absolute",
    )

    # Image identity
    registry: str = Field(
        default="ghcr.io/",
        description="Registry prefix prepended to the image name",
    )
    image_name: str = Field(default="godwoken", description="Image repository name")
    repository: str = Field(
        default="godwokenrises/godwoken",
        description="Source identity as owner/repo",
    )
    maintainer: str = Field(
        default="Godwoken Core Dev",
        description="Value of the maintainer and authors labels",
    )
    tag_prefix: str = Field(
        default="",
        description="Prefix stripped from release tags (e.g. 'web3@')",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        le=8,
        description="Maximum concurrent component builds",
    )
    lock_timeout: int = Field(
        default=300,
        ge=1,
        description="Seconds to wait for a cache key lock",
    )

    def resolve_path(self, path: Path) -> Path:
        """Resolve a possibly workspace-relative path."""
        if path.is_absolute():
            return path
        return self.workspace / path


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
