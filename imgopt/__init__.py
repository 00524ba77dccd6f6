"""imgopt, a request-time image optimization and caching service."""

__version__ = "0.1.0"
