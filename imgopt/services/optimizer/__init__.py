"""Image optimizer: request-time resizing, format negotiation and variant caching."""

from imgopt.services.optimizer.cache import CacheStore, cache_key, compute_ttl
from imgopt.services.optimizer.coalescer import RequestCoalescer
from imgopt.services.optimizer.formats import (
    AVIF,
    JPEG,
    PNG,
    SVG,
    WEBP,
    FormatDecision,
    FormatNegotiator,
    detect_content_type,
    negotiate,
    parse_accept,
)
from imgopt.services.optimizer.janitor import CacheJanitorService
from imgopt.services.optimizer.loaders import Loader, build_loader
from imgopt.services.optimizer.models import (
    CacheEntry,
    CacheStatus,
    ExternalImage,
    LayoutHint,
    LoaderConfig,
    OptimizationRequest,
    OptimizedImage,
    OptimizerConfig,
    ResolvedParams,
)
from imgopt.services.optimizer.origin import OriginFetcher, parse_cache_control
from imgopt.services.optimizer.pool import WorkerPool
from imgopt.services.optimizer.service import OptimizationService
from imgopt.services.optimizer.sizes import SizeCatalog
from imgopt.services.optimizer.transcoder import Transcoder

__all__ = [
    "AVIF",
    "JPEG",
    "PNG",
    "SVG",
    "WEBP",
    "CacheEntry",
    "CacheJanitorService",
    "CacheStatus",
    "CacheStore",
    "ExternalImage",
    "FormatDecision",
    "FormatNegotiator",
    "LayoutHint",
    "Loader",
    "LoaderConfig",
    "OptimizationRequest",
    "OptimizationService",
    "OptimizedImage",
    "OptimizerConfig",
    "OriginFetcher",
    "RequestCoalescer",
    "ResolvedParams",
    "SizeCatalog",
    "Transcoder",
    "WorkerPool",
    "build_loader",
    "cache_key",
    "compute_ttl",
    "detect_content_type",
    "negotiate",
    "parse_accept",
    "parse_cache_control",
]
