"""Width breakpoints that requested widths are rounded up to."""

from bisect import bisect_left
from collections.abc import Iterable, Iterator

from imgopt.exceptions import ConfigError


class SizeCatalog:
    """Sorted, deduplicated union of device and image width breakpoints.

    Built once at startup and never mutated afterwards.

    Args:
        device_sizes: Device width breakpoints
        image_sizes: Image width breakpoints

    Raises:
        ConfigError: If both arrays are empty or a width is not a positive integer

    Examples:
        >>> catalog = SizeCatalog([640, 1080], [16, 32])
        >>> catalog.resolve(800)
        1080
        >>> catalog.resolve(5000)
        1080
    """

    __slots__ = ("_widths",)

    def __init__(self, device_sizes: Iterable[int], image_sizes: Iterable[int]) -> None:
        merged = [*device_sizes, *image_sizes]
        if not merged:
            raise ConfigError("Size catalog is empty: configure device_sizes or image_sizes")

        for width in merged:
            if isinstance(width, bool) or not isinstance(width, int) or width <= 0:
                raise ConfigError(f"Image widths must be positive integers, got {width!r}")

        self._widths: tuple[int, ...] = tuple(sorted(set(merged)))

    @property
    def widths(self) -> tuple[int, ...]:
        return self._widths

    @property
    def max_width(self) -> int:
        return self._widths[-1]

    def resolve(self, requested_width: int) -> int:
        """Round a requested width up to the nearest catalog entry.

        Args:
            requested_width: Width asked for by the client

        Returns:
            Smallest catalog width >= requested_width, or the catalog maximum
            when the request exceeds every entry
        """
        index = bisect_left(self._widths, requested_width)
        if index == len(self._widths):
            return self._widths[-1]
        return self._widths[index]

    def __contains__(self, width: object) -> bool:
        return width in self._widths

    def __iter__(self) -> Iterator[int]:
        return iter(self._widths)

    def __len__(self) -> int:
        return len(self._widths)

    def __repr__(self) -> str:
        return f"SizeCatalog({list(self._widths)})"
