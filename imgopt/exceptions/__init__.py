"""Exceptions for imgopt: domain errors for services, HTTP errors for routers."""

from imgopt.exceptions.domain import (
    CacheWriteError,
    ConfigError,
    ForbiddenDomainError,
    ImageError,
    ImgoptError,
    InvalidRequestError,
    LoaderError,
    NotAnImageError,
    OriginError,
    OriginTimeoutError,
    OriginUnavailableError,
    PoolSaturatedError,
    StorageError,
    UnsupportedSourceFormatError,
)
from imgopt.exceptions.http import SERVICE_UNAVAILABLE, CustomHTTPException

__all__ = [
    "SERVICE_UNAVAILABLE",
    "CacheWriteError",
    "ConfigError",
    "CustomHTTPException",
    "ForbiddenDomainError",
    "ImageError",
    "ImgoptError",
    "InvalidRequestError",
    "LoaderError",
    "NotAnImageError",
    "OriginError",
    "OriginTimeoutError",
    "OriginUnavailableError",
    "PoolSaturatedError",
    "StorageError",
    "UnsupportedSourceFormatError",
]
