"""Common type definitions for imgopt.

This module provides type aliases for commonly used types across the application,
improving type safety and reducing repetition.
"""

from collections.abc import Awaitable, Callable
from typing import TypeAlias, TypeVar

T = TypeVar("T")

# Loader types
CustomResolver: TypeAlias = Callable[[str, int, int], str]

# Build function handed to the request coalescer
BuildFn: TypeAlias = Callable[[], Awaitable[T]]

# Clock returning seconds since the epoch
Clock: TypeAlias = Callable[[], float]
