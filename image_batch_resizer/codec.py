"""
Pillow-backed image codec (Qt-free).

``PillowCodec.render`` decodes source bytes, resamples to the logical
target box, applies the item's clockwise rotation, and encodes to the
requested format.  For 90/270 degree rotations the encoded image therefore
has swapped axes relative to the reported target size.

Instances hold only settings, so they pickle cleanly into worker processes.
"""

import io

from PIL import Image, UnidentifiedImageError

from image_batch_resizer.config import (
    FLATTEN_BACKGROUND, JPEG_OPTIMIZE, JPEG_SUBSAMPLING, PNG_COMPRESS_LEVEL, WEBP_METHOD,
)
from image_batch_resizer.image_io import open_image
from image_batch_resizer.models import (
    Dimensions, OutputFormat, RotationAngle, clamp_quality, round_half_away,
)

# Clockwise rotation expressed as Pillow's (counter-clockwise) transpose ops
_ROTATE_CLOCKWISE = {
    RotationAngle.DEG_90: Image.Transpose.ROTATE_270,
    RotationAngle.DEG_180: Image.Transpose.ROTATE_180,
    RotationAngle.DEG_270: Image.Transpose.ROTATE_90,
}


class CodecError(Exception):
    """Decoding or encoding one item failed."""


def quality_to_pil(quality: float) -> int:
    """Map a [0, 1] quality fraction to Pillow's 1-100 scale."""
    return max(1, min(100, round_half_away(clamp_quality(quality) * 100)))


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def _flatten(img: Image.Image) -> Image.Image:
    """Composite transparency onto a solid background for formats without alpha."""
    rgba = img.convert("RGBA")
    background = Image.new("RGB", rgba.size, FLATTEN_BACKGROUND)
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


class PillowCodec:
    def __init__(self, resample: Image.Resampling = Image.Resampling.LANCZOS):
        self.resample = resample

    def render(
        self,
        source: bytes,
        target: Dimensions,
        rotation: RotationAngle,
        output_format: OutputFormat,
        quality: float,
    ) -> bytes:
        """Decode *source*, resize to *target*, rotate, and encode.

        Raises CodecError on any decode or encode failure.
        """
        output_format = OutputFormat.parse(output_format)
        try:
            img = open_image(source)
        except (UnidentifiedImageError, OSError, ValueError, EOFError) as exc:
            raise CodecError(f"decode failed: {exc}") from exc

        if output_format is OutputFormat.JPEG:
            img = _flatten(img) if _has_alpha(img) else img.convert("RGB")
        else:
            img = img.convert("RGBA" if _has_alpha(img) else "RGB")

        resized = img.resize(target.as_tuple(), self.resample)
        transpose = _ROTATE_CLOCKWISE.get(RotationAngle(rotation))
        if transpose is not None:
            resized = resized.transpose(transpose)

        buffer = io.BytesIO()
        try:
            if output_format is OutputFormat.JPEG:
                resized.save(
                    buffer, "JPEG",
                    quality=quality_to_pil(quality),
                    optimize=JPEG_OPTIMIZE,
                    subsampling=JPEG_SUBSAMPLING,
                )
            elif output_format is OutputFormat.WEBP:
                resized.save(buffer, "WEBP", quality=quality_to_pil(quality), method=WEBP_METHOD)
            else:
                resized.save(buffer, "PNG", compress_level=PNG_COMPRESS_LEVEL)
        except (OSError, ValueError, KeyError) as exc:
            raise CodecError(f"{output_format.pil_format} encode failed: {exc}") from exc
        return buffer.getvalue()
