"""Models for the image optimization service."""

import importlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from imgopt.exceptions import ConfigError
from imgopt.settings import LoaderKind
from imgopt.types import CustomResolver

if TYPE_CHECKING:
    from imgopt.settings import Settings


class LayoutHint(str, Enum):
    """Client layout the image is requested for."""

    FIXED = "fixed"
    INTRINSIC = "intrinsic"
    RESPONSIVE = "responsive"
    FILL = "fill"


class CacheStatus(str, Enum):
    """Diagnostic cache outcome reported to clients."""

    HIT = "HIT"
    MISS = "MISS"
    STALE = "STALE"


class OptimizationRequest(BaseModel):
    """A single image optimization request, immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    src: str = Field(min_length=1)
    requested_width: int = Field(gt=0)
    quality: int = Field(ge=1, le=100)
    accepted_formats: tuple[str, ...] = ()
    layout_hint: LayoutHint = LayoutHint.RESPONSIVE


class ResolvedParams(BaseModel):
    """Normalized, cacheable projection of an OptimizationRequest."""

    model_config = ConfigDict(frozen=True)

    bucket_width: int
    output_format: str
    quality: int


class Validators(BaseModel):
    """Origin-supplied tokens used to detect upstream change."""

    model_config = ConfigDict(frozen=True)

    etag: str | None = None
    last_modified: str | None = None

    @property
    def token(self) -> str | None:
        """Strongest available validator, ETag preferred."""
        return self.etag or self.last_modified


class CacheControl(BaseModel):
    """Freshness directives parsed from an origin ``Cache-Control`` header."""

    model_config = ConfigDict(frozen=True)

    s_maxage: int | None = None
    max_age: int | None = None


@dataclass(slots=True)
class OriginResource:
    """Source image fetched for a single build.

    Not a Pydantic model so the payload is never copied on validation.
    """

    data: bytes = field(repr=False)
    content_type: str
    validators: Validators = field(default_factory=Validators)
    cache_control: CacheControl = field(default_factory=CacheControl)


@dataclass(slots=True)
class TranscodeResult:
    """Encoded variant produced by the transcoder."""

    data: bytes = field(repr=False)
    content_type: str
    width: int
    height: int


class CacheEntry(BaseModel):
    """Metadata for a cached variant on disk."""

    key: str
    content_type: str
    created_at: float
    expires_at: float
    path: Path
    size_bytes: int
    source: str = ""
    validators: Validators = Field(default_factory=Validators)

    @property
    def ttl(self) -> int:
        """Freshness lifetime the entry was stored with, in seconds."""
        return int(self.expires_at - self.created_at)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class Fresh:
    """Lookup result: entry present and within its TTL."""

    entry: CacheEntry


@dataclass(frozen=True, slots=True)
class Expired:
    """Lookup result: entry present but past its TTL."""

    entry: CacheEntry


@dataclass(frozen=True, slots=True)
class Miss:
    """Lookup result: no entry for the key."""


LookupResult: TypeAlias = Fresh | Expired | Miss

MISS = Miss()


@dataclass(slots=True)
class OptimizedImage:
    """Bytes served for an optimization request."""

    data: bytes = field(repr=False)
    content_type: str
    cache_status: CacheStatus
    max_age: int
    etag: str


@dataclass(frozen=True, slots=True)
class ExternalImage:
    """Loader bypass result: the provider URL that serves the image."""

    url: str


class LoaderConfig(BaseModel):
    """Loader strategy selection, passed explicitly to the service."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: LoaderKind = LoaderKind.DEFAULT
    path_prefix: str = ""
    custom_resolver: CustomResolver | None = None


class OptimizerConfig(BaseModel):
    """Immutable optimizer configuration built once at startup."""

    model_config = ConfigDict(frozen=True)

    domains: tuple[str, ...] = ()
    static_root: Path = Path("./public")
    fetch_timeout: float = 7.0
    max_source_bytes: int = 50 * 1024 * 1024
    loader: LoaderConfig = Field(default_factory=LoaderConfig)
    device_sizes: tuple[int, ...] = (640, 750, 828, 1080, 1200, 1920, 2048, 3840)
    image_sizes: tuple[int, ...] = (16, 32, 48, 64, 96, 128, 256, 384)
    formats: tuple[str, ...] = ("image/avif", "image/webp")
    default_quality: int = 75
    cache_dir: Path = Path("./cache")
    minimum_cache_ttl: int = 60
    memory_cache_entries: int = 128
    max_cache_size_bytes: int | None = None
    max_concurrent_fetches: int = 16
    max_fetch_queue: int = 256
    max_concurrent_transcodes: int = 4
    max_transcode_queue: int = 64

    @classmethod
    def from_settings(cls, settings: "Settings") -> "OptimizerConfig":
        """Build the optimizer configuration from application settings.

        Args:
            settings: Loaded application settings

        Returns:
            Frozen OptimizerConfig

        Raises:
            ConfigError: If the custom loader resolver cannot be imported
        """
        resolver = None
        if settings.loader_resolver:
            resolver = import_resolver(settings.loader_resolver)

        return cls(
            domains=tuple(settings.domains),
            static_root=Path(settings.static_root),
            fetch_timeout=settings.fetch_timeout,
            max_source_bytes=settings.max_source_bytes,
            loader=LoaderConfig(
                kind=settings.loader,
                path_prefix=settings.path_prefix,
                custom_resolver=resolver,
            ),
            device_sizes=tuple(settings.device_sizes),
            image_sizes=tuple(settings.image_sizes),
            formats=tuple(settings.formats),
            default_quality=settings.default_quality,
            cache_dir=Path(settings.cache_dir),
            minimum_cache_ttl=settings.minimum_cache_ttl,
            memory_cache_entries=settings.memory_cache_entries,
            max_cache_size_bytes=settings.max_cache_size_bytes,
            max_concurrent_fetches=settings.max_concurrent_fetches,
            max_fetch_queue=settings.max_fetch_queue,
            max_concurrent_transcodes=settings.max_concurrent_transcodes,
            max_transcode_queue=settings.max_transcode_queue,
        )


def import_resolver(path: str) -> CustomResolver:
    """Import a custom loader resolver from a ``module:function`` string.

    Args:
        path: Import path, e.g. ``"myproject.images:resolve"``

    Returns:
        The resolver callable

    Raises:
        ConfigError: If the path is malformed, missing, or not callable
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Loader resolver must look like 'module:function', got '{path}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import loader resolver module '{module_name}'") from e

    resolver: Any = getattr(module, attr, None)
    if not callable(resolver):
        raise ConfigError(f"Loader resolver '{path}' is not a callable")
    return resolver  # type: ignore[no-any-return]
