"""Configuration settings for container_exporter.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: caller arguments > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from container_exporter import __version__


def _default_cache_dir() -> Path:
    """Return the default artifact cache directory."""
    return Path.home() / ".cache" / "container-exporter" / "artifacts"


def _default_results_dir() -> Path:
    """Return the default results directory for export reports."""
    return Path.cwd() / "results"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the CONTAINER_EXPORT_
    prefix. Callers can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTAINER_EXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Depot
    bldr_url: str = Field(
        default="https://bldr.habitat.sh",
        description="Base URL of the package depot",
    )
    channel: str = Field(
        default="stable",
        description="Depot channel used to resolve partial identifiers",
    )
    default_origin: str = Field(
        default="core",
        description="Origin applied to identifiers given as a bare name",
    )
    pkg_target: str = Field(
        default="x86_64-linux",
        description="Package target platform",
    )

    # Image
    base_image: str = Field(
        default="scratch",
        description="Base image the root filesystem is layered onto",
    )
    base_packages: list[str] = Field(
        default_factory=lambda: ["core/busybox-static", "core/cacerts"],
        description="Packages installed into every image",
    )
    engine: Literal["docker", "podman", "buildah"] = Field(
        default="docker",
        description="Default container engine",
    )
    exporter_version: str = Field(
        default=__version__,
        description="Version recorded in image labels and reports",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Directory for downloaded package artifacts",
    )
    results_dir: Path = Field(
        default_factory=_default_results_dir,
        description="Directory receiving export reports",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent directory for build workspaces (system default if not set)",
    )

    # Registry
    ecr_region: str = Field(
        default="us-west-2",
        description="AWS region used for ECR token exchange",
    )

    # Concurrency
    max_concurrent_exports: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum concurrent exports in a batch",
    )

    # Timeouts (in seconds)
    depot_timeout: int = Field(
        default=60,
        ge=1,
        description="Timeout for depot metadata requests",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for package artifact downloads",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
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
