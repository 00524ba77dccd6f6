"""
Configuration settings for imgopt.

This module provides a settings class for imgopt, with support for loading
configuration from TOML files and environment variables.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

DEFAULT_DEVICE_SIZES = [640, 750, 828, 1080, 1200, 1920, 2048, 3840]
DEFAULT_IMAGE_SIZES = [16, 32, 48, 64, 96, 128, 256, 384]
DEFAULT_FORMATS = ["image/avif", "image/webp"]


class LoaderKind(str, Enum):
    """Supported image loader strategies."""

    DEFAULT = "default"
    IMGIX = "imgix"
    CLOUDINARY = "cloudinary"
    AKAMAI = "akamai"
    CUSTOM = "custom"


class Settings(BaseSettings):
    """Main settings class for imgopt.

    This class handles loading configuration from TOML files and environment variables,
    with support for custom settings sources.
    """

    model_config = SettingsConfigDict(
        toml_file=["settings.toml", "settings.custom.toml"], env_prefix="IMGOPT_", extra="ignore"
    )

    # Server settings
    port: int = 8000
    host: str = "127.0.0.1"
    root_url: str = "/"
    debug: bool = False

    # Source settings
    domains: list[str] = []
    static_root: str = "./public"
    fetch_timeout: float = 7.0
    max_source_bytes: int = 50 * 1024 * 1024

    # Loader settings
    loader: LoaderKind = LoaderKind.DEFAULT
    path_prefix: str = ""
    loader_resolver: str | None = None  # "package.module:function" for the custom loader

    # Size and format settings
    device_sizes: list[int] = Field(default_factory=lambda: list(DEFAULT_DEVICE_SIZES))
    image_sizes: list[int] = Field(default_factory=lambda: list(DEFAULT_IMAGE_SIZES))
    formats: list[str] = Field(default_factory=lambda: list(DEFAULT_FORMATS))
    default_quality: int = Field(default=75, ge=1, le=100)
    # Build-time static import analysis is not part of the server; kept for config parity
    disable_static_imports: bool = False

    # Cache settings
    cache_dir: str = "./cache"
    minimum_cache_ttl: int = 60
    memory_cache_entries: int = 128
    max_cache_size_mb: float | None = None
    cache_janitor_enabled: bool = False
    cache_janitor_interval: int = 3600

    # Worker pool settings
    max_concurrent_fetches: int = 16
    max_fetch_queue: int = 256
    max_concurrent_transcodes: int = 4
    max_transcode_queue: int = 64

    # Logging settings
    log_level: str = "INFO"
    log_to_file: bool = False
    log_dir: str | None = None  # If None, will use {cache_dir}/../logs
    log_rotation: str = "20 MB"
    log_retention: str = "1 week"
    log_format: str | None = None  # Use default if None

    @classmethod
    def settings_customize_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the sources for settings.

        Priority order: constructor arguments, environment variables, then TOML config files
        """
        return init_settings, env_settings, TomlConfigSettingsSource(settings_cls)

    @property
    def max_cache_size_bytes(self) -> int | None:
        """Get the disk cache size limit in bytes, or None when unbounded."""
        if self.max_cache_size_mb is None:
            return None
        return int(self.max_cache_size_mb * 1024 * 1024)

    def get_log_dir(self) -> Path:
        """Get the log directory path.

        Returns:
            Path to the log directory. Uses log_dir if specified,
            otherwise a logs directory next to cache_dir.
        """
        if self.log_dir:
            return Path(self.log_dir)
        return Path(self.cache_dir).parent / "logs"


@lru_cache
def get_settings() -> Settings:
    """Get the settings instance, with caching.

    Returns:
        Cached Settings instance
    """
    return Settings()

