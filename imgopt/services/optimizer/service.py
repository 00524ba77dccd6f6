"""Image optimization service — orchestrates sizing, negotiation, caching and builds."""

import asyncio
import functools
import hashlib
import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from imgopt.exceptions import CacheWriteError, InvalidRequestError, UnsupportedSourceFormatError
from imgopt.services.optimizer.cache import CacheStore, cache_key, compute_ttl
from imgopt.services.optimizer.coalescer import RequestCoalescer
from imgopt.services.optimizer.formats import (
    FormatNegotiator,
    guess_content_type,
    is_transcodable,
)
from imgopt.services.optimizer.loaders import Loader, build_loader
from imgopt.services.optimizer.models import (
    CacheStatus,
    Expired,
    ExternalImage,
    Fresh,
    LayoutHint,
    OptimizationRequest,
    OptimizedImage,
    OptimizerConfig,
    OriginResource,
    ResolvedParams,
)
from imgopt.services.optimizer.origin import OriginFetcher
from imgopt.services.optimizer.pool import WorkerPool
from imgopt.services.optimizer.sizes import SizeCatalog
from imgopt.services.optimizer.transcoder import Transcoder
from imgopt.types import Clock
from imgopt.utils.logger import logger

# Output format recorded in the cache key when neither the source type nor a
# modern format is known before fetch: the variant keeps the source's format
ORIGINAL_FORMAT = "original"


@dataclass(slots=True)
class _Variant:
    """Outcome of one build, shared by every coalesced waiter."""

    data: bytes = field(repr=False)
    content_type: str
    ttl: int


def body_etag(data: bytes) -> str:
    """Strong ETag derived from the response body."""
    return f'"{hashlib.sha256(data).hexdigest()[:32]}"'


class OptimizationService:
    """Serves optimized image variants.

    Per request: normalize the parameters, short-circuit through the loader
    when an external provider is configured, otherwise look the variant up in
    the cache and build it on a miss or after expiry. Builds for the same key
    are coalesced; origin fetches and transcodes run on independently bounded
    worker pools.
    """

    def __init__(
        self,
        config: OptimizerConfig,
        *,
        fetcher: OriginFetcher | None = None,
        transcoder: Transcoder | None = None,
        store: CacheStore | None = None,
        loader: Loader | None = None,
        clock: Clock = time.time,
    ):
        """Initialize the service and its components.

        Args:
            config: Optimizer configuration
            fetcher: Origin fetcher, built from ``config`` when omitted
            transcoder: Transcoder, a default Pillow transcoder when omitted
            store: Variant cache, built from ``config`` when omitted
            loader: Loader strategy, built from ``config.loader`` when omitted
            clock: Source of the current time, seconds since the epoch

        Raises:
            ConfigError: If the size catalog, formats or loader are misconfigured
        """
        self._config = config
        self._clock = clock
        self._sizes = SizeCatalog(config.device_sizes, config.image_sizes)
        self._transcoder = transcoder or Transcoder()
        self._negotiator = self._build_negotiator(config.formats)
        self._loader = loader or build_loader(config.loader)
        self._fetcher = fetcher or OriginFetcher(
            domains=config.domains,
            static_root=config.static_root,
            timeout=config.fetch_timeout,
            max_source_bytes=config.max_source_bytes,
        )
        self._store = store or CacheStore(
            config.cache_dir, memory_max_entries=config.memory_cache_entries, clock=clock
        )
        self._coalescer = RequestCoalescer()
        self._fetch_pool = WorkerPool(
            "fetch", config.max_concurrent_fetches, config.max_fetch_queue
        )
        self._transcode_pool = WorkerPool(
            "transcode",
            config.max_concurrent_transcodes,
            config.max_transcode_queue,
            threaded=True,
        )

        logger.info(
            f"Image optimizer ready: {len(self._sizes)} widths, "
            f"formats={list(self._negotiator.formats)}, loader={self._loader.kind.value}"
        )

    def _build_negotiator(self, formats: tuple[str, ...]) -> FormatNegotiator:
        """Validate configured formats, then keep those this Pillow build can encode."""
        configured = FormatNegotiator(formats)
        available = [f for f in configured.formats if self._transcoder.supports(f)]
        for missing in set(configured.formats) - set(available):
            logger.warning(f"No encoder for {missing} in this Pillow build, format disabled")
        return FormatNegotiator(available)

    @property
    def config(self) -> OptimizerConfig:
        return self._config

    @property
    def sizes(self) -> SizeCatalog:
        return self._sizes

    @property
    def negotiator(self) -> FormatNegotiator:
        return self._negotiator

    @property
    def loader(self) -> Loader:
        return self._loader

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    def build_request(
        self,
        src: str,
        width: int,
        quality: int | None = None,
        accept: str | None = None,
        layout: LayoutHint | str = LayoutHint.RESPONSIVE,
    ) -> OptimizationRequest:
        """Build a validated request from raw parameters.

        Args:
            src: Local path or absolute URL
            width: Requested width in pixels
            quality: Requested quality, ``default_quality`` when omitted
            accept: Raw ``Accept`` header
            layout: Client layout hint

        Returns:
            Immutable OptimizationRequest

        Raises:
            InvalidRequestError: If a parameter is out of range
        """
        try:
            return OptimizationRequest(
                src=src,
                requested_width=width,
                quality=self._config.default_quality if quality is None else quality,
                accepted_formats=self._negotiator.rank(accept),
                layout_hint=layout,
            )
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            raise InvalidRequestError(f"Invalid image request parameters: {fields}") from e

    def resolve_params(
        self, request: OptimizationRequest, content_type: str | None = None
    ) -> ResolvedParams:
        """Normalize a request into its cacheable projection.

        The output format is decided before the source is fetched, from the
        source's extension unless ``content_type`` is given.

        Args:
            request: Optimization request
            content_type: Known source content type, if any

        Returns:
            ResolvedParams
        """
        hint = content_type or guess_content_type(request.src)
        if hint is None:
            output_format = self._negotiator.preferred(request.accepted_formats) or ORIGINAL_FORMAT
        else:
            output_format = self._negotiator.select(request.accepted_formats, hint).content_type

        return ResolvedParams(
            bucket_width=self._sizes.resolve(request.requested_width),
            output_format=output_format,
            quality=request.quality,
        )

    @staticmethod
    def cache_key(src: str, params: ResolvedParams, validator: str | None = None) -> str:
        return cache_key(src, validator, params)

    async def optimize(self, request: OptimizationRequest) -> OptimizedImage | ExternalImage:
        """Serve one optimization request.

        Args:
            request: Optimization request

        Returns:
            OptimizedImage, or ExternalImage when a provider loader is configured

        Raises:
            ForbiddenDomainError: If the source host is not allow-listed
            InvalidRequestError: If the source is malformed or not an image
            LoaderError: If a custom loader cannot resolve the provider URL
            OriginUnavailableError: If the origin cannot be fetched
            PoolSaturatedError: If a worker pool queue is full
        """
        if self._loader.bypass:
            width = self._sizes.resolve(request.requested_width)
            url = self._loader.resolve_url(request.src, width, request.quality)
            logger.debug(f"Loader {self._loader.kind.value} bypass: {request.src} -> {url}")
            return ExternalImage(url=url)

        self._fetcher.check_source(request.src)
        params = self.resolve_params(request)
        validators = await self._fetcher.peek_validator(request.src)
        key = self.cache_key(request.src, params, validators.token if validators else None)

        status = CacheStatus.MISS
        match await self._store.lookup(key):
            case Fresh(entry=entry):
                data = await self._store.read(entry)
                if data is not None:
                    remaining = max(0, int(entry.expires_at - self._clock()))
                    return self._served(data, entry.content_type, CacheStatus.HIT, remaining)
            case Expired():
                status = CacheStatus.STALE

        build = functools.partial(self._build, request.src, params, key)
        variant = await self._coalescer.begin_or_join(key, build)
        return self._served(variant.data, variant.content_type, status, variant.ttl)

    async def _build(self, src: str, params: ResolvedParams, key: str) -> _Variant:
        """Fetch, transcode and store one variant. Runs once per key at a time."""
        # A previous build may have committed the key since the caller's lookup
        match await self._store.lookup(key):
            case Fresh(entry=entry):
                data = await self._store.read(entry)
                if data is not None:
                    return _Variant(data, entry.content_type, entry.ttl)
            case Expired(entry=entry):
                await self._store.evict(key)
                logger.debug(f"Evicted expired variant {key[:12]} of {src[:80]}")

        origin = await self._fetch_pool.run(functools.partial(self._fetcher.fetch, src))
        ttl = compute_ttl(origin.cache_control, self._config.minimum_cache_ttl)
        data, content_type = await self._transcode(src, origin, params)

        try:
            await self._store.put(
                key, data, content_type, ttl, source=src, validators=origin.validators
            )
        except CacheWriteError as e:
            logger.warning(f"Serving {src[:80]} uncached: {e}")

        return _Variant(data, content_type, ttl)

    async def _transcode(
        self, src: str, origin: OriginResource, params: ResolvedParams
    ) -> tuple[bytes, str]:
        """Transcode a source, falling back to its original bytes."""
        if not is_transcodable(origin.content_type):
            logger.debug(f"Passthrough for {src[:80]} ({origin.content_type})")
            return origin.data, origin.content_type

        if params.output_format in self._negotiator.formats:
            target = params.output_format
        else:
            target = origin.content_type

        try:
            result = await self._transcode_pool.run_sync(
                self._transcoder.transcode, origin.data, params.bucket_width, target, params.quality
            )
        except UnsupportedSourceFormatError as e:
            logger.info(f"Passthrough for {src[:80]}: {e}")
            return origin.data, origin.content_type

        return result.data, result.content_type

    @staticmethod
    def _served(data: bytes, content_type: str, status: CacheStatus, max_age: int) -> OptimizedImage:
        return OptimizedImage(
            data=data,
            content_type=content_type,
            cache_status=status,
            max_age=max_age,
            etag=body_etag(data),
        )

    async def stats(self) -> dict[str, Any]:
        """Get cache, coalescer and worker pool statistics."""
        return {
            "cache": await asyncio.to_thread(self._store.stats),
            "coalescer": self._coalescer.stats(),
            "pools": {
                "fetch": self._fetch_pool.stats(),
                "transcode": self._transcode_pool.stats(),
            },
        }

    async def aclose(self) -> None:
        """Release the HTTP client, worker threads and memory tier."""
        await self._fetcher.aclose()
        self._fetch_pool.shutdown()
        self._transcode_pool.shutdown()
        await self._store.shutdown()
        logger.info("Image optimizer shut down")
