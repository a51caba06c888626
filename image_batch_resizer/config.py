"""
Application constants and configuration.

DEFAULT_PRESETS provides the built-in preset catalog. Runtime presets are
loaded from presets.json via the presets module. All other constants
control the default resize policy, the output codecs, and source file
handling.

The ``config_dir()`` helper returns the platform-appropriate config
directory and is shared by all persistence modules.
"""

import os
import sys
from pathlib import Path

# =============================================================================
# APP IDENTITY & CONFIG DIRECTORY
# =============================================================================
APP_NAME = "image-batch-resizer"


def config_dir() -> Path:
    """Return the platform-appropriate config directory, creating it if needed."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    directory = base / APP_NAME
    directory.mkdir(parents=True, exist_ok=True)
    return directory

# =============================================================================
# DEFAULT PRESETS: Built-in fallback when presets.json is missing or corrupt
# =============================================================================
# A width/height of 0 marks the free-form "Custom" entry.
CUSTOM_PRESET_NAME = "Custom"

DEFAULT_PRESETS = [
    {"name": "Instagram", "width": 1080, "height": 1080},
    {"name": "Story", "width": 1080, "height": 1920},
    {"name": "Facebook", "width": 820, "height": 312},
    {"name": "YouTube", "width": 1280, "height": 720},
    {"name": "HD", "width": 1280, "height": 720},
    {"name": "Full HD", "width": 1920, "height": 1080},
    {"name": CUSTOM_PRESET_NAME, "width": 0, "height": 0},
]

DEFAULT_PRESET_NAME = "Instagram"

# Aspect-ratio shortcuts offered in free-form mode, as (name, numerator, denominator)
ASPECT_RATIO_SHORTCUTS = [
    ("1:1", 1, 1),
    ("4:3", 4, 3),
    ("3:4", 3, 4),
    ("16:9", 16, 9),
    ("9:16", 9, 16),
    ("21:9", 21, 9),
    ("3:2", 3, 2),
    ("2:3", 2, 3),
]

# Width used when an aspect shortcut is picked and neither axis is positive
BASELINE_WIDTH = 1080

# =============================================================================
# DEFAULT POLICY
# =============================================================================
DEFAULT_TARGET_WIDTH = 1080
DEFAULT_TARGET_HEIGHT = 1080
DEFAULT_MAINTAIN_ASPECT_RATIO = True
DEFAULT_QUALITY = 0.85

# Quality as shown to users (percent slider)
QUALITY_PERCENT_MIN = 10
QUALITY_PERCENT_MAX = 100
QUALITY_PERCENT_STEP = 5

# =============================================================================
# OUTPUT CODECS
# =============================================================================
# Keyed by OutputFormat value: Pillow format name, archive extension, MIME type
OUTPUT_FORMAT_TABLE = {
    "jpeg": {"pil_format": "JPEG", "extension": "jpg", "mime": "image/jpeg"},
    "png": {"pil_format": "PNG", "extension": "png", "mime": "image/png"},
    "webp": {"pil_format": "WEBP", "extension": "webp", "mime": "image/webp"},
}
OUTPUT_FORMAT_DEFAULT = "jpeg"

# PNG compression level (0-9, 9 = maximum compression)
PNG_COMPRESS_LEVEL = 9

# JPEG encoder settings (subsampling 0 = 4:4:4)
JPEG_SUBSAMPLING = 0
JPEG_OPTIMIZE = True

# WEBP encoder effort (0-6, higher = slower and smaller)
WEBP_METHOD = 4

# Background used when flattening transparency for JPEG output
FLATTEN_BACKGROUND = (255, 255, 255)

# =============================================================================
# SOURCES, ARCHIVE, WORKERS
# =============================================================================
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tiff", ".tif", ".psd"}

DEFAULT_ARCHIVE_NAME = "resized-images"

# Sequential encoding unless the caller asks for more
DEFAULT_WORKERS = 1
