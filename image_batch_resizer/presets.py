"""
Preset catalog: named target boxes, aspect-ratio shortcuts and their
persistence.

Runtime presets are stored in a JSON file in the user's config directory
(provided by ``config.config_dir()``).  If the file is missing or corrupt
the built-in DEFAULT_PRESETS are written back and used.  The on-disk
format uses a versioned envelope::

    {"version": 1, "presets": [{"name": "Instagram", "width": 1080, "height": 1080}, ...]}

Selecting a preset or a shortcut is a pure function of the current policy:
it returns a new ``ResizePolicy`` and never touches the registry.
"""

import json
import logging
from copy import deepcopy
from dataclasses import dataclass, replace
from fractions import Fraction
from pathlib import Path

from image_batch_resizer.config import (
    ASPECT_RATIO_SHORTCUTS, BASELINE_WIDTH, CUSTOM_PRESET_NAME, DEFAULT_PRESETS, config_dir,
)
from image_batch_resizer.models import ResizePolicy, round_half_away

logger = logging.getLogger(__name__)

_PRESETS_FILENAME = "presets.json"
_FORMAT_VERSION = 1

_PRESET_REQUIRED_KEYS = {"name", "width", "height"}
_PRESET_INT_KEYS = ("width", "height")


# =============================================================================
# Catalog types
# =============================================================================
@dataclass(frozen=True)
class Preset:
    name: str
    width: int
    height: int

    @property
    def is_custom(self) -> bool:
        return self.name == CUSTOM_PRESET_NAME


@dataclass(frozen=True)
class AspectRatio:
    name: str
    ratio: Fraction  # width / height


@dataclass(frozen=True)
class PresetSelection:
    """Outcome of picking a preset: the new policy and whether free-form editing applies."""
    policy: ResizePolicy
    free_form: bool


def presets_from_dicts(data: list[dict]) -> list[Preset]:
    return [Preset(p["name"], p["width"], p["height"]) for p in data]


DEFAULT_PRESET_CATALOG = presets_from_dicts(DEFAULT_PRESETS)

ASPECT_RATIOS = [AspectRatio(name, Fraction(num, den)) for name, num, den in ASPECT_RATIO_SHORTCUTS]


def find_preset(presets: list[Preset], name: str) -> Preset:
    for preset in presets:
        if preset.name == name:
            return preset
    raise KeyError(f"unknown preset {name!r}")


def find_aspect_ratio(name: str) -> AspectRatio:
    for aspect in ASPECT_RATIOS:
        if aspect.name == name:
            return aspect
    raise KeyError(f"unknown aspect ratio {name!r}")


# =============================================================================
# Selection
# =============================================================================
def select_preset(policy: ResizePolicy, preset: Preset) -> PresetSelection:
    """Apply a preset to *policy*.

    A regular preset sets the target box and turns aspect locking on.  The
    Custom preset leaves the policy untouched and asks for free-form editing.
    """
    if preset.is_custom:
        return PresetSelection(policy, free_form=True)
    new_policy = replace(
        policy,
        target_width=preset.width,
        target_height=preset.height,
        maintain_aspect_ratio=True,
    )
    return PresetSelection(new_policy, free_form=False)


def apply_aspect_ratio(policy: ResizePolicy, aspect: AspectRatio) -> ResizePolicy:
    """Recompute the other axis from whichever axis holds a positive value.

    Width wins when both are positive.  With neither positive, width falls
    back to BASELINE_WIDTH.  Aspect locking is switched on.
    """
    width, height = _as_int(policy.target_width), _as_int(policy.target_height)
    if width > 0:
        height = round_half_away(width / aspect.ratio)
    elif height > 0:
        width = round_half_away(height * aspect.ratio)
    else:
        width = BASELINE_WIDTH
        height = round_half_away(BASELINE_WIDTH / aspect.ratio)
    return replace(policy, target_width=width, target_height=height, maintain_aspect_ratio=True)


def link_axis(
    policy: ResizePolicy,
    aspect: AspectRatio | None,
    width: int | None = None,
    height: int | None = None,
) -> ResizePolicy:
    """Set one axis explicitly; with an active shortcut and aspect lock, derive the other."""
    if width is not None:
        policy = replace(policy, target_width=width)
        if aspect is not None and policy.maintain_aspect_ratio:
            policy = replace(policy, target_height=round_half_away(_as_int(width) / aspect.ratio))
    elif height is not None:
        policy = replace(policy, target_height=height)
        if aspect is not None and policy.maintain_aspect_ratio:
            policy = replace(policy, target_width=round_half_away(_as_int(height) * aspect.ratio))
    return policy


def _as_int(value) -> int:
    """Best-effort integer for half-typed UI input; unusable values count as 0."""
    try:
        return round_half_away(Fraction(value))
    except (TypeError, ValueError, OverflowError, ZeroDivisionError):
        return 0


# =============================================================================
# Validation
# =============================================================================
def validate_presets(data: object) -> list[str]:
    """
    Validate a presets data structure.

    Returns a list of error strings (empty means valid).
    """
    errors: list[str] = []

    if not isinstance(data, list):
        errors.append("Presets data must be a list")
        return errors

    names_seen: set[str] = set()

    for i, preset in enumerate(data):
        prefix = f"Preset #{i + 1}"

        if not isinstance(preset, dict):
            errors.append(f"{prefix}: must be a dict")
            continue

        missing = _PRESET_REQUIRED_KEYS - preset.keys()
        if missing:
            errors.append(f"{prefix}: missing keys: {', '.join(sorted(missing))}")
            continue

        name = preset.get("name", "")
        if not isinstance(name, str) or not name.strip():
            errors.append(f"{prefix}: name must be a non-empty string")
        elif name in names_seen:
            errors.append(f"{prefix}: duplicate name '{name}'")
        else:
            names_seen.add(name)

        # Custom carries 0x0; every other preset needs a real box
        is_custom = name == CUSTOM_PRESET_NAME
        for key in _PRESET_INT_KEYS:
            val = preset.get(key)
            if not isinstance(val, int) or isinstance(val, bool):
                errors.append(f"{prefix}: {key} must be an integer, got {val!r}")
            elif not is_custom and val <= 0:
                errors.append(f"{prefix}: {key} must be a positive integer, got {val!r}")

    return errors


# =============================================================================
# Load / Save
# =============================================================================
def _presets_path() -> Path:
    """Return the full path to presets.json."""
    return config_dir() / _PRESETS_FILENAME


def load_presets() -> list[Preset]:
    """
    Load presets from presets.json.

    If the file is missing, corrupt, or fails validation, writes the
    defaults and returns them.
    """
    path = _presets_path()

    if not path.exists():
        logger.info("presets.json not found, creating with defaults at %s", path)
        _write_defaults(path)
        return list(DEFAULT_PRESET_CATALOG)

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read presets.json (%s), restoring defaults", exc)
        _write_defaults(path)
        return list(DEFAULT_PRESET_CATALOG)

    if not isinstance(raw, dict) or raw.get("version") != _FORMAT_VERSION or "presets" not in raw:
        logger.warning("presets.json missing version envelope, restoring defaults")
        _write_defaults(path)
        return list(DEFAULT_PRESET_CATALOG)

    data = raw["presets"]
    errors = validate_presets(data)
    if errors:
        logger.warning(
            "presets.json validation failed:\n  %s\nRestoring defaults.",
            "\n  ".join(errors),
        )
        _write_defaults(path)
        return list(DEFAULT_PRESET_CATALOG)

    return presets_from_dicts(data)


def store_preset(presets: list[Preset], name: str, width: int, height: int) -> list[Preset]:
    """Return *presets* with *name* set to ``width x height``.

    An existing preset keeps its position; a new one goes just before Custom.
    """
    name = name.strip()
    if name == CUSTOM_PRESET_NAME:
        raise ValueError(f"'{CUSTOM_PRESET_NAME}' is reserved for free-form sizing")
    preset = Preset(name, width, height)
    updated = [preset if p.name == name else p for p in presets]
    if preset not in updated:
        custom_at = next((i for i, p in enumerate(updated) if p.is_custom), len(updated))
        updated.insert(custom_at, preset)
    return updated


def save_presets(presets: list[Preset]) -> Path:
    """Validate and write *presets*; returns the file written.

    Raises ValueError if validation fails, OSError if the file cannot be written.
    """
    data = [{"name": p.name, "width": p.width, "height": p.height} for p in presets]
    errors = validate_presets(data)
    if errors:
        raise ValueError("Invalid presets data:\n  " + "\n  ".join(errors))
    path = _presets_path()
    _write_envelope(path, data)
    logger.info("Saved %d preset(s) to %s", len(presets), path)
    return path


def _write_defaults(path: Path) -> None:
    try:
        _write_envelope(path, deepcopy(DEFAULT_PRESETS))
    except OSError as exc:
        logger.error("Could not write default presets to %s: %s", path, exc)


def _write_envelope(path: Path, data: list[dict]) -> None:
    text = json.dumps({"version": _FORMAT_VERSION, "presets": data}, indent=2, ensure_ascii=False)
    path.write_text(text, encoding="utf-8")
