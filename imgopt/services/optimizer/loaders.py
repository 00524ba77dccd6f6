"""Loader adapters that rewrite image requests into provider URLs."""

from abc import ABC, abstractmethod
from urllib.parse import urlencode

from imgopt.exceptions import ConfigError, LoaderError
from imgopt.services.optimizer.models import LoaderConfig
from imgopt.settings import LoaderKind
from imgopt.types import CustomResolver

DEFAULT_OPTIMIZER_PATH = "/optimize"


def _provider_path(src: str) -> str:
    """Source as appended to a provider prefix: root-relative without the leading slash."""
    return src[1:] if src.startswith("/") and not src.startswith("//") else src


class Loader(ABC):
    """Maps ``(src, width, quality)`` to the URL that serves the image."""

    kind: LoaderKind

    #: Whether requests are redirected to the provider instead of optimized locally
    bypass: bool = True

    def __init__(self, path_prefix: str = ""):
        self.path_prefix = path_prefix.rstrip("/")

    @abstractmethod
    def resolve_url(self, src: str, width: int, quality: int) -> str:
        """Build the URL serving ``src`` at ``width`` and ``quality``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(path_prefix={self.path_prefix!r})"


class DefaultLoader(Loader):
    """Points at this service's own optimizer endpoint; never a bypass."""

    kind = LoaderKind.DEFAULT
    bypass = False

    def resolve_url(self, src: str, width: int, quality: int) -> str:
        base = self.path_prefix or DEFAULT_OPTIMIZER_PATH
        return f"{base}?{urlencode({'src': src, 'w': width, 'q': quality})}"


class ImgixLoader(Loader):
    kind = LoaderKind.IMGIX

    def resolve_url(self, src: str, width: int, quality: int) -> str:
        params = urlencode({"auto": "format", "fit": "max", "w": width, "q": quality})
        return f"{self.path_prefix}/{_provider_path(src)}?{params}"


class CloudinaryLoader(Loader):
    kind = LoaderKind.CLOUDINARY

    def resolve_url(self, src: str, width: int, quality: int) -> str:
        transforms = f"f_auto,c_limit,w_{width},q_{quality}"
        return f"{self.path_prefix}/{transforms}/{_provider_path(src)}"


class AkamaiLoader(Loader):
    """Akamai Image Manager picks the quality itself; only the width is passed."""

    kind = LoaderKind.AKAMAI

    def resolve_url(self, src: str, width: int, quality: int) -> str:
        return f"{self.path_prefix}/{_provider_path(src)}?{urlencode({'imwidth': width})}"


class CustomLoader(Loader):
    kind = LoaderKind.CUSTOM

    def __init__(self, resolver: CustomResolver, path_prefix: str = ""):
        super().__init__(path_prefix)
        self._resolver = resolver

    def resolve_url(self, src: str, width: int, quality: int) -> str:
        """Delegate to the configured resolver.

        Raises:
            LoaderError: If the resolver fails or returns something other than a URL
        """
        try:
            url = self._resolver(src, width, quality)
        except Exception as e:
            raise LoaderError(f"Custom loader failed for '{src}': {e}") from e
        if not isinstance(url, str) or not url:
            raise LoaderError(f"Custom loader returned an invalid URL for '{src}': {url!r}")
        return url


_PROVIDERS: dict[LoaderKind, type[Loader]] = {
    LoaderKind.IMGIX: ImgixLoader,
    LoaderKind.CLOUDINARY: CloudinaryLoader,
    LoaderKind.AKAMAI: AkamaiLoader,
}


def build_loader(config: LoaderConfig) -> Loader:
    """Create the loader selected by the configuration.

    Args:
        config: Loader selection

    Returns:
        Loader instance

    Raises:
        ConfigError: If a provider loader has no path prefix, or a custom
            loader has no resolver
    """
    if config.kind == LoaderKind.DEFAULT:
        return DefaultLoader(config.path_prefix)

    if config.kind == LoaderKind.CUSTOM:
        if config.custom_resolver is None:
            raise ConfigError("Loader 'custom' requires a loader resolver")
        return CustomLoader(config.custom_resolver, config.path_prefix)

    if not config.path_prefix:
        raise ConfigError(f"Loader '{config.kind.value}' requires a path_prefix")
    return _PROVIDERS[config.kind](config.path_prefix)
