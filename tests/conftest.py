"""Shared fixtures: synthetic images, a controllable clock and cache directories."""

from collections.abc import Callable
from io import BytesIO
from pathlib import Path
from typing import TypeAlias

import pytest
from PIL import Image

ImageFactory: TypeAlias = Callable[..., bytes]


class FakeClock:
    """Manually advanced wall clock (seconds since the epoch)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


_COLORS = {"RGB": (200, 40, 40), "RGBA": (200, 40, 40, 128), "L": 128}


def _encode_image(
    format: str = "JPEG",
    size: tuple[int, int] = (1600, 900),
    mode: str = "RGB",
    frames: int = 1,
) -> bytes:
    """Encode a solid-colour test image."""
    buffer = BytesIO()
    image = Image.new(mode, size, color=_COLORS.get(mode, 0))
    if frames > 1:
        extra = [Image.new(mode, size, color=(40, 40, 200 - i * 50)) for i in range(frames - 1)]
        image.save(buffer, format=format, save_all=True, append_images=extra, duration=100)
    else:
        image.save(buffer, format=format)
    return buffer.getvalue()


@pytest.fixture
def make_image() -> ImageFactory:
    """Factory encoding synthetic images: ``make_image("PNG", size=(64, 32))``."""
    return _encode_image


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A 1600x900 JPEG."""
    return _encode_image("JPEG", (1600, 900))


@pytest.fixture
def svg_bytes() -> bytes:
    return b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10"></svg>'


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmp_cache_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for cache storage."""
    return tmp_path / "image_cache"


@pytest.fixture
def static_root(tmp_path: Path) -> Path:
    """Return a temporary static root directory."""
    root = tmp_path / "public"
    root.mkdir()
    return root
