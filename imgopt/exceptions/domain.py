"""
Domain exceptions for the image optimization layer.

These exceptions are raised by services and components to represent
optimization failures without coupling to HTTP status codes.
"""


class ImgoptError(Exception):
    """Base exception for all imgopt-specific errors."""

    pass


# Configuration errors
class ConfigError(ImgoptError):
    """Raised when the optimizer configuration is invalid.

    Fatal at startup, never raised per request.
    """

    pass


# Request errors
class InvalidRequestError(ImgoptError):
    """Raised when optimization request parameters are malformed."""

    pass


class NotAnImageError(InvalidRequestError):
    """Raised when the source resource is not an image."""

    def __init__(self, src: str, content_type: str | None = None) -> None:
        if content_type:
            super().__init__(f"Resource '{src}' is not a valid image ({content_type})")
        else:
            super().__init__(f"Resource '{src}' is not a valid image")


class ForbiddenDomainError(ImgoptError):
    """Raised when an absolute source URL points at a host outside the allow-list."""

    def __init__(self, host: str) -> None:
        self.host = host
        super().__init__(f"Host '{host}' is not in the configured domains")


# Origin errors
class OriginError(ImgoptError):
    """Base exception for origin fetch errors."""

    pass


class OriginUnavailableError(OriginError):
    """Raised when the origin cannot be reached or answers with a non-2xx status."""

    pass


class OriginTimeoutError(OriginUnavailableError):
    """Raised when the origin fetch exceeds its deadline."""

    def __init__(self, src: str, timeout: float) -> None:
        super().__init__(f"Fetching '{src}' timed out after {timeout:g}s")


# Loader errors
class LoaderError(ImgoptError):
    """Raised when a loader cannot produce a provider URL for a request."""

    pass


# Image processing errors
class ImageError(ImgoptError):
    """Base exception for image processing errors."""

    pass


class UnsupportedSourceFormatError(ImageError):
    """Raised when the transcoder cannot decode or re-encode a source image.

    Always recovered by serving the original bytes unmodified.
    """

    pass


# Storage errors
class StorageError(ImgoptError):
    """Raised when a cache storage operation fails."""

    pass


class CacheWriteError(StorageError):
    """Raised when a cache entry cannot be persisted."""

    pass


# Capacity errors
class PoolSaturatedError(ImgoptError):
    """Raised when a worker pool queue is full."""

    def __init__(self, pool: str, max_queue: int) -> None:
        super().__init__(f"Worker pool '{pool}' is saturated ({max_queue} tasks queued)")
