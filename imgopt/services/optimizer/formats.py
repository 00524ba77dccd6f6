"""Output format negotiation and content type detection."""

import mimetypes
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from urllib.parse import urlparse

from imgopt.exceptions import ConfigError

JPEG = "image/jpeg"
PNG = "image/png"
GIF = "image/gif"
WEBP = "image/webp"
AVIF = "image/avif"
TIFF = "image/tiff"
SVG = "image/svg+xml"
ICO = "image/x-icon"
ICNS = "image/x-icns"
BMP = "image/bmp"

# Formats the operator may list in ``formats``
MODERN_FORMATS = frozenset({AVIF, WEBP})

# Raster formats the transcoder can decode and re-encode
TRANSCODABLE_TYPES = frozenset({JPEG, PNG, GIF, WEBP, AVIF, TIFF})

# Formats that may carry several frames
ANIMATABLE_TYPES = frozenset({GIF, PNG, WEBP})

_ALIASES = {
    "image/jpg": JPEG,
    "image/pjpeg": JPEG,
    "image/ico": ICO,
    "image/vnd.microsoft.icon": ICO,
    "image/x-ms-bmp": BMP,
}

_EXTENSIONS = {
    ".jpg": JPEG,
    ".jpeg": JPEG,
    ".png": PNG,
    ".gif": GIF,
    ".webp": WEBP,
    ".avif": AVIF,
    ".tif": TIFF,
    ".tiff": TIFF,
    ".svg": SVG,
    ".ico": ICO,
    ".icns": ICNS,
    ".bmp": BMP,
}


@dataclass(frozen=True, slots=True)
class FormatDecision:
    """Outcome of format negotiation.

    Attributes:
        content_type: Media type the variant will be served as
        transcode: False when the source must be passed through untouched
    """

    content_type: str
    transcode: bool


def normalize_content_type(content_type: str | None) -> str:
    """Strip parameters and fold known aliases, e.g. ``image/jpg; x=1`` -> ``image/jpeg``."""
    if not content_type:
        return ""
    media_type = content_type.split(";", 1)[0].strip().lower()
    return _ALIASES.get(media_type, media_type)


def is_transcodable(content_type: str | None) -> bool:
    return normalize_content_type(content_type) in TRANSCODABLE_TYPES


def _weighted_media_types(header: str) -> list[tuple[str, float]]:
    """Split an ``Accept`` header into ``(media_type, weight)`` pairs in header order.

    Duplicates keep their first occurrence, ``q=0`` entries are dropped and
    malformed weights count as 1.
    """
    pairs: list[tuple[str, float]] = []
    seen: set[str] = set()
    for part in header.split(","):
        media_type, *params = (p.strip() for p in part.split(";"))
        media_type = media_type.lower()
        if not media_type or media_type in seen:
            continue
        seen.add(media_type)

        weight = 1.0
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    weight = float(value)
                except ValueError:
                    weight = 1.0
        if weight > 0:
            pairs.append((media_type, weight))
    return pairs


def parse_accept(header: str | None) -> tuple[str, ...]:
    """Parse an ``Accept`` header into media types ordered by client weight.

    Entries with ``q=0`` are dropped, malformed weights count as 1, and
    equal weights keep header order.

    Args:
        header: Raw ``Accept`` header value

    Returns:
        Media types, most preferred first
    """
    if not header:
        return ()
    pairs = _weighted_media_types(header)
    # sorted() is stable, so equal weights keep header order
    return tuple(media_type for media_type, _ in sorted(pairs, key=lambda p: -p[1]))


def detect_content_type(data: bytes) -> str | None:
    """Detect an image content type from its leading magic bytes.

    Args:
        data: Raw image bytes (only the first few hundred bytes are inspected)

    Returns:
        Media type, or None if the payload is not a recognized image
    """
    head = data[:512]
    if head.startswith(b"\xff\xd8\xff"):
        return JPEG
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return PNG
    if head.startswith((b"GIF87a", b"GIF89a")):
        return GIF
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return WEBP
    if head[4:8] == b"ftyp" and head[8:12] in (b"avif", b"avis"):
        return AVIF
    if head.startswith((b"II*\x00", b"MM\x00*")):
        return TIFF
    if head.startswith(b"\x00\x00\x01\x00"):
        return ICO
    if head.startswith(b"icns"):
        return ICNS
    if head.startswith(b"BM"):
        return BMP

    text = head.lstrip().lower()
    if text.startswith(b"<svg") or (text.startswith(b"<?xml") and b"<svg" in text):
        return SVG
    return None


def guess_content_type(src: str) -> str | None:
    """Guess a source's content type from its path extension.

    Args:
        src: Local path or absolute URL

    Returns:
        Media type, or None if the extension is unknown
    """
    path = urlparse(src).path.lower()
    for extension, content_type in _EXTENSIONS.items():
        if path.endswith(extension):
            return content_type
    guessed, _ = mimetypes.guess_type(path)
    return normalize_content_type(guessed) or None


class FormatNegotiator:
    """Selects the output format from client preference and operator preference.

    Args:
        formats: Operator-ordered modern formats, most preferred first

    Raises:
        ConfigError: If a configured format is not a supported modern format
    """

    def __init__(self, formats: Iterable[str]) -> None:
        configured = tuple(normalize_content_type(f) for f in formats)
        unknown = [f for f in configured if f not in MODERN_FORMATS]
        if unknown:
            raise ConfigError(
                f"Unsupported output formats {unknown}; choose from {sorted(MODERN_FORMATS)}"
            )
        self._formats = tuple(dict.fromkeys(configured))

    @property
    def formats(self) -> tuple[str, ...]:
        return self._formats

    def rank(self, accept: str | None) -> tuple[str, ...]:
        """Order accepted media types by client weight, then operator preference.

        Args:
            accept: Raw ``Accept`` header

        Returns:
            Accepted media types; among equal client weights, configured
            formats come first in operator order
        """
        if not accept:
            return ()

        operator_rank = {fmt: i for i, fmt in enumerate(self._formats)}
        fallback = len(self._formats)
        pairs = _weighted_media_types(accept)
        ranked = sorted(
            enumerate(pairs),
            key=lambda item: (-item[1][1], operator_rank.get(item[1][0], fallback), item[0]),
        )
        return tuple(media_type for _, (media_type, _) in ranked)

    def preferred(self, accepted: Sequence[str]) -> str | None:
        """Return the first configured format the client explicitly accepts."""
        for media_type in accepted:
            if media_type in self._formats:
                return media_type
        return None

    def select(self, accepted: Sequence[str], origin_content_type: str | None) -> FormatDecision:
        """Pick the output format for an origin content type.

        Args:
            accepted: Ranked media types accepted by the client
            origin_content_type: Content type of the source image

        Returns:
            Passthrough decision for non-transcodable sources, otherwise the
            preferred modern format or the original format re-encoded
        """
        origin = normalize_content_type(origin_content_type)
        if origin not in TRANSCODABLE_TYPES:
            return FormatDecision(content_type=origin or "application/octet-stream", transcode=False)

        modern = self.preferred(accepted)
        if modern is not None:
            return FormatDecision(content_type=modern, transcode=True)
        return FormatDecision(content_type=origin, transcode=True)

    def negotiate(self, accept: str | None, origin_content_type: str | None) -> FormatDecision:
        """Negotiate the output format from a raw ``Accept`` header."""
        return self.select(self.rank(accept), origin_content_type)


def negotiate(
    accept: str | None, origin_content_type: str | None, configured_formats: Iterable[str]
) -> FormatDecision:
    """Negotiate the output format for one request.

    Args:
        accept: Raw ``Accept`` header
        origin_content_type: Content type of the source image
        configured_formats: Operator-ordered modern formats

    Returns:
        FormatDecision for the variant
    """
    return FormatNegotiator(configured_formats).negotiate(accept, origin_content_type)
