"""
Size statistics shown next to the item list.

The estimate is a rough bytes-per-pixel heuristic for display only; nothing
in the registry or the processor depends on it.
"""

from dataclasses import dataclass

from image_batch_resizer.models import ItemStatus, ItemView, OutputFormat

# Bytes per pixel: PNG is flat, lossy formats scale with quality
_PNG_BPP = 1.2
_WEBP_BPP = (0.03, 0.22)
_JPEG_BPP = (0.05, 0.35)

_UNITS = ["B", "KB", "MB"]


def estimate_size(width: int, height: int, output_format: OutputFormat, quality: float) -> int:
    """Estimated encoded size in bytes for a *width* x *height* image."""
    output_format = OutputFormat.parse(output_format)
    if output_format is OutputFormat.PNG:
        bpp = _PNG_BPP
    elif output_format is OutputFormat.WEBP:
        bpp = _WEBP_BPP[0] + quality * _WEBP_BPP[1]
    else:
        bpp = _JPEG_BPP[0] + quality * _JPEG_BPP[1]
    return round(width * height * bpp)


def format_bytes(size: int) -> str:
    """Human-readable size with one decimal, e.g. ``1.5 MB``. (0 → '0 B')"""
    if size <= 0:
        return "0 B"
    exponent = 0
    while exponent < len(_UNITS) - 1 and size >= 1024 ** (exponent + 1):
        exponent += 1
    value = round(size / 1024 ** exponent, 1)
    text = f"{value:.1f}".rstrip("0").rstrip(".")
    return f"{text} {_UNITS[exponent]}"


@dataclass(frozen=True)
class BatchStats:
    total: int
    completed: int
    original_bytes: int
    resized_bytes: int
    estimated_bytes: int

    @property
    def estimated_saving(self) -> float | None:
        """Fraction saved by the estimate, or None without source bytes."""
        if self.original_bytes <= 0:
            return None
        return 1 - self.estimated_bytes / self.original_bytes

    @property
    def actual_saving(self) -> float | None:
        if self.original_bytes <= 0 or self.resized_bytes <= 0:
            return None
        return 1 - self.resized_bytes / self.original_bytes


def collect_stats(views: list[ItemView], output_format: OutputFormat, quality: float) -> BatchStats:
    return BatchStats(
        total=len(views),
        completed=sum(1 for v in views if v.status is ItemStatus.COMPLETED),
        original_bytes=sum(v.source_bytes for v in views),
        resized_bytes=sum(v.result_bytes or 0 for v in views),
        estimated_bytes=sum(
            estimate_size(v.target_size.width, v.target_size.height, output_format, quality)
            for v in views
        ),
    )
