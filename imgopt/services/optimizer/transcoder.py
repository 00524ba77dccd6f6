"""Transcoder — resizes and re-encodes source images with Pillow.

All methods are blocking and CPU-bound; the service runs them on the
transcode worker pool.
"""

from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError, features

from imgopt.exceptions import UnsupportedSourceFormatError
from imgopt.services.optimizer.formats import AVIF, GIF, JPEG, PNG, TIFF, WEBP
from imgopt.services.optimizer.models import TranscodeResult
from imgopt.utils.logger import logger

# Pillow encoder name per output content type
_ENCODERS = {
    JPEG: "JPEG",
    PNG: "PNG",
    WEBP: "WEBP",
    AVIF: "AVIF",
    GIF: "GIF",
    TIFF: "TIFF",
}

# Pillow feature flag required by an encoder, if any
_FEATURES = {
    WEBP: "webp",
    AVIF: "avif",
}


def flatten_palette(image: Image.Image) -> Image.Image:
    """Expand a palette image to RGB, or to RGBA when the palette carries transparency.

    Palette images report a single ``P`` band, so their transparency is only
    visible through ``has_transparency_data``.
    """
    if image.mode not in ("P", "PA"):
        return image
    return image.convert("RGBA" if image.has_transparency_data else "RGB")


def scaled_size(width: int, height: int, target_width: int) -> tuple[int, int]:
    """Compute the output size for a target width, preserving aspect ratio.

    Images are never enlarged: a target at or above the original width keeps
    the original size.

    Args:
        width: Original width
        height: Original height
        target_width: Requested width

    Returns:
        (width, height) of the output image
    """
    if target_width >= width:
        return width, height
    return target_width, max(1, round(height * target_width / width))


class Transcoder:
    """Resizes and recompresses images to a target width, format and quality."""

    def supports(self, content_type: str) -> bool:
        """Check whether this Pillow build can encode a content type."""
        encoder = _ENCODERS.get(content_type)
        if encoder is None:
            return False
        feature = _FEATURES.get(content_type)
        if feature is None:
            return True
        return bool(features.check(feature))

    def transcode(
        self, data: bytes, target_width: int, target_format: str, quality: int
    ) -> TranscodeResult:
        """Resize and re-encode an image.

        Args:
            data: Source image bytes
            target_width: Width to scale down to
            target_format: Output content type
            quality: Encoder quality, 1..100

        Returns:
            TranscodeResult with the encoded bytes and output dimensions

        Raises:
            UnsupportedSourceFormatError: If the source cannot be decoded, is
                animated, or the target format has no encoder
        """
        if not self.supports(target_format):
            raise UnsupportedSourceFormatError(f"No encoder available for {target_format}")

        try:
            with Image.open(BytesIO(data)) as image:
                if getattr(image, "is_animated", False):
                    raise UnsupportedSourceFormatError("Animated images are passed through")
                image.load()
                image = ImageOps.exif_transpose(image)
                if target_format not in (GIF, PNG):
                    image = flatten_palette(image)
                size = scaled_size(image.width, image.height, target_width)
                if size != image.size:
                    image = image.resize(size, Image.Resampling.LANCZOS)
                encoded = self._encode(image, target_format, quality)
        except UnsupportedSourceFormatError:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise UnsupportedSourceFormatError(f"Cannot decode source image: {e}") from e
        except (OSError, ValueError, SyntaxError) as e:
            # Truncated or corrupt payloads surface from Pillow's decoders as these
            raise UnsupportedSourceFormatError(f"Cannot transcode source image: {e}") from e

        logger.debug(
            f"Transcoded to {target_format} {size[0]}x{size[1]} q={quality} ({len(encoded)} bytes)"
        )
        return TranscodeResult(data=encoded, content_type=target_format, width=size[0], height=size[1])

    @staticmethod
    def _encode(image: Image.Image, content_type: str, quality: int) -> bytes:
        """Encode an image, converting its mode where the encoder requires it."""
        encoder = _ENCODERS[content_type]
        options: dict[str, object] = {}

        if content_type == JPEG:
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            options = {"quality": quality, "optimize": True, "progressive": True}
        elif content_type == WEBP:
            image = flatten_palette(image)
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
            options = {"quality": quality, "method": 4}
        elif content_type == AVIF:
            image = flatten_palette(image)
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
            options = {"quality": quality}
        elif content_type == PNG:
            options = {"optimize": True}
        elif content_type == GIF:
            if image.mode not in ("P", "L"):
                image = image.convert("P", palette=Image.Palette.ADAPTIVE)

        buffer = BytesIO()
        image.save(buffer, format=encoder, **options)
        return buffer.getvalue()
