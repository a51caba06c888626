"""
Qt-free image I/O utilities.

Provides source handles (the byte owners behind each registry item),
helpers that read image dimensions without a full decode, and folder
scanning.  PSD files are measured and composited with psd-tools; every
other format goes through Pillow.  Safe to import in worker processes.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from psd_tools import PSDImage

from image_batch_resizer.config import IMAGE_EXTENSIONS
from image_batch_resizer.models import Dimensions

logger = logging.getLogger(__name__)

# Allow very large images (Pillow's default limit is ~178MP)
Image.MAX_IMAGE_PIXELS = None

# Photoshop files start with this signature
_PSD_SIGNATURE = b"8BPS"


class IngestionError(Exception):
    """A source could not be read or measured; it is never added to the registry."""


# =============================================================================
# Source handles
# =============================================================================
class SourceHandle:
    """Owns access to one item's source bytes until ``release()`` is called.

    ``release()`` is idempotent; reading after release raises RuntimeError.
    """

    def __init__(self, name: str):
        self.name = name
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def size(self) -> int:
        raise NotImplementedError

    def read(self) -> bytes:
        if self._released:
            raise RuntimeError(f"source {self.name!r} has been released")
        return self._read()

    def _read(self) -> bytes:
        raise NotImplementedError

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._drop()
        logger.debug("Released source %s", self.name)

    def _drop(self) -> None:
        pass


class FileSource(SourceHandle):
    """Reads bytes from disk on demand; nothing is held in memory."""

    def __init__(self, path: Path):
        super().__init__(path.name)
        self.path = path
        self._size = path.stat().st_size

    @property
    def size(self) -> int:
        return self._size

    def _read(self) -> bytes:
        return self.path.read_bytes()


class BytesSource(SourceHandle):
    """Keeps an in-memory copy of the source bytes."""

    def __init__(self, name: str, data: bytes):
        super().__init__(name)
        self._data = data
        self._size = len(data)

    @property
    def size(self) -> int:
        return self._size

    def _read(self) -> bytes:
        return self._data

    def _drop(self) -> None:
        self._data = b""


@dataclass
class SourceFile:
    """One accepted file, ready for registry ingestion."""
    name: str
    handle: SourceHandle
    original_size: Dimensions


# =============================================================================
# Decoding helpers
# =============================================================================
def is_psd(data: bytes) -> bool:
    return data[:4] == _PSD_SIGNATURE


def open_image(data: bytes) -> Image.Image:
    """Decode bytes into a PIL image, compositing PSD layers with psd-tools."""
    if is_psd(data):
        psd = PSDImage.open(io.BytesIO(data))
        return psd.composite()
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def get_image_size(data: bytes) -> Dimensions:
    """Get image dimensions without fully loading/compositing."""
    try:
        if is_psd(data):
            psd = PSDImage.open(io.BytesIO(data))
            width, height = psd.width, psd.height
        else:
            with Image.open(io.BytesIO(data)) as img:
                width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError, EOFError) as exc:
        raise IngestionError(f"cannot read image header: {exc}") from exc
    if width <= 0 or height <= 0:
        raise IngestionError(f"image reports empty dimensions {width}x{height}")
    return Dimensions(width, height)


# =============================================================================
# Ingestion
# =============================================================================
def load_source(path: Path) -> SourceFile:
    """Measure a file on disk and wrap it in a FileSource.

    Raises IngestionError if the file cannot be read or decoded.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise IngestionError(f"{path.name}: {exc}") from exc
    size = get_image_size(data)
    logger.debug("Measured %s: %s", path.name, size)
    return SourceFile(path.name, FileSource(path), size)


def load_bytes(name: str, data: bytes) -> SourceFile:
    """Measure in-memory bytes (e.g. an upload) and wrap them in a BytesSource."""
    size = get_image_size(data)
    return SourceFile(name, BytesSource(name, data), size)


def scan_folder(folder: Path, recursive: bool = True) -> list[Path]:
    """List image files under *folder* with a supported extension, sorted by path."""
    pattern = "**/*" if recursive else "*"
    return sorted(
        p for p in Path(folder).glob(pattern)
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )
