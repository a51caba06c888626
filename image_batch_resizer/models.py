"""
Data models and resize-geometry utilities.

ResizePolicy, ImageItem and the small value types around them are the core
data structures shared by the registry, the batch processor and the
archive packager.  ``ImageItem.target_size`` is always derived through
``compute_target_size()``; nothing else writes it.  The helper functions
at the bottom handle aspect-ratio math, rounding and canvas orientation.
"""

import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from fractions import Fraction

from image_batch_resizer.config import (
    DEFAULT_TARGET_WIDTH, DEFAULT_TARGET_HEIGHT, DEFAULT_MAINTAIN_ASPECT_RATIO,
    DEFAULT_QUALITY, OUTPUT_FORMAT_DEFAULT, OUTPUT_FORMAT_TABLE,
)


# =============================================================================
# Enumerations
# =============================================================================
class RotationAngle(IntEnum):
    """Clockwise rotation applied to an item at encode time."""
    DEG_0 = 0
    DEG_90 = 90
    DEG_180 = 180
    DEG_270 = 270

    def rotated(self, degrees: int) -> "RotationAngle":
        """Rotate by a multiple of 90 degrees, wrapping modulo 360."""
        if degrees % 90:
            raise ValueError(f"rotation must be a multiple of 90 degrees, got {degrees}")
        return RotationAngle((self.value + degrees) % 360)

    @property
    def swaps_axes(self) -> bool:
        return self in (RotationAngle.DEG_90, RotationAngle.DEG_270)


class OutputFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @classmethod
    def parse(cls, value) -> "OutputFormat":
        """Accept an OutputFormat, its value, or a common alias like 'JPG'."""
        if isinstance(value, OutputFormat):
            return value
        text = str(value).strip().lower().lstrip(".")
        if text == "jpg":
            text = "jpeg"
        return cls(text)

    @property
    def pil_format(self) -> str:
        return OUTPUT_FORMAT_TABLE[self.value]["pil_format"]

    @property
    def extension(self) -> str:
        return OUTPUT_FORMAT_TABLE[self.value]["extension"]

    @property
    def mime(self) -> str:
        return OUTPUT_FORMAT_TABLE[self.value]["mime"]


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# Legal status changes.  PROCESSING -> PENDING covers an encode that finished
# after its inputs were invalidated; ERROR -> PROCESSING is a retry pass.
STATUS_TRANSITIONS = {
    ItemStatus.PENDING: frozenset({ItemStatus.PROCESSING}),
    ItemStatus.PROCESSING: frozenset({ItemStatus.COMPLETED, ItemStatus.ERROR, ItemStatus.PENDING}),
    ItemStatus.COMPLETED: frozenset({ItemStatus.PENDING, ItemStatus.PROCESSING}),
    ItemStatus.ERROR: frozenset({ItemStatus.PENDING, ItemStatus.PROCESSING}),
}


def can_transition(current: ItemStatus, new: ItemStatus) -> bool:
    return new in STATUS_TRANSITIONS[current]


# =============================================================================
# Data classes
# =============================================================================
@dataclass(frozen=True)
class Dimensions:
    """Width/height pair in pixels."""
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"dimensions must be positive, got {self.width}x{self.height}")

    def swapped(self) -> "Dimensions":
        return Dimensions(self.height, self.width)

    def as_tuple(self) -> tuple[int, int]:
        return self.width, self.height

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class ResizePolicy:
    """Process-wide target size and encoding settings.

    Width and height are kept as given; they are coerced to usable values
    only when geometry is computed, so a half-typed value never raises.
    """
    target_width: int = DEFAULT_TARGET_WIDTH
    target_height: int = DEFAULT_TARGET_HEIGHT
    maintain_aspect_ratio: bool = DEFAULT_MAINTAIN_ASPECT_RATIO
    quality: float = DEFAULT_QUALITY
    output_format: OutputFormat = OutputFormat(OUTPUT_FORMAT_DEFAULT)

    def __post_init__(self):
        object.__setattr__(self, "output_format", OutputFormat.parse(self.output_format))
        object.__setattr__(self, "quality", clamp_quality(self.quality))


@dataclass(frozen=True)
class EncodedResult:
    """Encoded output bytes for one item."""
    data: bytes
    output_format: OutputFormat
    size: Dimensions  # physical pixel size of the encoded image

    @property
    def byte_length(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ItemView:
    """Read-only snapshot of one item, handed to the presentation layer."""
    id: str
    name: str
    original_size: Dimensions
    rotation: RotationAngle
    override: Dimensions | None
    target_size: Dimensions
    status: ItemStatus
    source_bytes: int
    result_bytes: int | None
    error: str | None


@dataclass
class ImageItem:
    """Tracks geometry and lifecycle state for one source image."""
    id: str
    name: str
    source: object  # image_io.SourceHandle
    original_size: Dimensions
    target_size: Dimensions
    rotation: RotationAngle = RotationAngle.DEG_0
    override: Dimensions | None = None
    status: ItemStatus = ItemStatus.PENDING
    result: EncodedResult | None = None
    error: str | None = None
    revision: int = 0  # bumped on every change that invalidates an encode

    def view(self) -> ItemView:
        return ItemView(
            id=self.id,
            name=self.name,
            original_size=self.original_size,
            rotation=self.rotation,
            override=self.override,
            target_size=self.target_size,
            status=self.status,
            source_bytes=getattr(self.source, "size", 0),
            result_bytes=self.result.byte_length if self.result else None,
            error=self.error,
        )


# =============================================================================
# Resize geometry
# =============================================================================
def round_half_away(value) -> int:
    """Round to the nearest integer, halves away from zero. (2.5 → 3, -2.5 → -3)"""
    exact = Fraction(value)
    magnitude = math.floor(abs(exact) + Fraction(1, 2))
    return magnitude if exact >= 0 else -magnitude


def coerce_dimension(value) -> int:
    """Coerce user input to a pixel count of at least 1.

    Non-numeric, non-finite, zero and negative values all become 1.
    """
    try:
        number = round_half_away(Fraction(value))
    except (TypeError, ValueError, OverflowError, ZeroDivisionError):
        return 1
    return max(1, number)


def clamp_quality(value) -> float:
    """Clamp quality to the [0, 1] range; unusable input falls back to the default."""
    try:
        quality = float(value)
    except (TypeError, ValueError):
        return DEFAULT_QUALITY
    if math.isnan(quality):
        return DEFAULT_QUALITY
    return min(1.0, max(0.0, quality))


def compute_target_size(
    original: Dimensions,
    policy: ResizePolicy,
    rotation: RotationAngle = RotationAngle.DEG_0,
    override: Dimensions | None = None,
) -> Dimensions:
    """Compute the logical output box for one item.

    Rotation is accepted for completeness but never changes the result:
    the ratio is always taken from the unrotated original, and the
    reported size stays the pre-rotation box (see ``canvas_size``).
    """
    if override is not None and not policy.maintain_aspect_ratio:
        return Dimensions(coerce_dimension(override.width), coerce_dimension(override.height))

    if policy.maintain_aspect_ratio:
        width = coerce_dimension(override.width if override is not None else policy.target_width)
        # height = width / (w / h), kept exact to avoid float drift on halves
        height = round_half_away(Fraction(width * original.height, original.width))
        return Dimensions(width, max(1, height))

    return Dimensions(coerce_dimension(policy.target_width), coerce_dimension(policy.target_height))


def canvas_size(target: Dimensions, rotation: RotationAngle) -> Dimensions:
    """Physical pixel size of the encoded image for a logical target box."""
    return target.swapped() if rotation.swaps_axes else target
