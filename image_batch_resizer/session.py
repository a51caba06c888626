"""
Resize session: the command surface the presentation layer talks to.

The session keeps the preset/shortcut selection (the registry holds the
one ResizePolicy) and wires the registry, the batch processor and the archive
packager together.  Every policy change goes through ``set_policy``, which
hands the new value to the registry for the recompute-and-invalidate sweep.
"""

import logging
from dataclasses import replace
from pathlib import Path

from image_batch_resizer.config import DEFAULT_ARCHIVE_NAME, DEFAULT_PRESET_NAME, CUSTOM_PRESET_NAME
from image_batch_resizer.image_io import IngestionError, SourceFile, load_bytes, load_source
from image_batch_resizer.models import Dimensions, ItemView, OutputFormat, ResizePolicy, coerce_dimension
from image_batch_resizer.packager import ArchivePackager, EmptyArchiveError
from image_batch_resizer.presets import (
    DEFAULT_PRESET_CATALOG, Preset, apply_aspect_ratio, find_aspect_ratio, find_preset,
    link_axis, select_preset,
)
from image_batch_resizer.processor import BatchProcessor, BatchReport
from image_batch_resizer.registry import ItemRegistry
from image_batch_resizer.stats import BatchStats, collect_stats

logger = logging.getLogger(__name__)


class ResizeSession:
    def __init__(
        self,
        policy: ResizePolicy | None = None,
        presets: list[Preset] | None = None,
        processor: BatchProcessor | None = None,
        packager: ArchivePackager | None = None,
    ):
        self.presets = list(presets) if presets is not None else list(DEFAULT_PRESET_CATALOG)
        self.registry = ItemRegistry(policy or ResizePolicy())
        self.processor = processor or BatchProcessor()
        self.packager = packager or ArchivePackager()
        self.selected_preset: str | None = DEFAULT_PRESET_NAME if policy is None else None
        self.selected_aspect: str | None = None

    # =========================================================================
    # Policy
    # =========================================================================

    @property
    def policy(self) -> ResizePolicy:
        return self.registry.policy

    @property
    def free_form(self) -> bool:
        return self.selected_preset in (None, CUSTOM_PRESET_NAME)

    def set_policy(self, policy: ResizePolicy) -> int:
        """Replace the policy; returns how many Completed items were invalidated."""
        invalidated = self.registry.apply_policy(policy)
        if invalidated:
            logger.info("Policy change invalidated %d completed item(s)", invalidated)
        return invalidated

    def update_policy(self, **changes) -> int:
        """Change individual policy fields, e.g. ``update_policy(quality=0.7)``."""
        return self.set_policy(replace(self.policy, **changes))

    def select_preset(self, name: str) -> bool:
        """Apply a named preset; returns True if free-form editing should be offered."""
        selection = select_preset(self.policy, find_preset(self.presets, name))
        self.selected_preset = name
        if not selection.free_form:
            self.selected_aspect = None
        self.set_policy(selection.policy)
        return selection.free_form

    def select_aspect_ratio(self, name: str | None) -> None:
        """Pick an aspect shortcut, or clear it with None (width/height stay as they are)."""
        if name is None:
            self.selected_aspect = None
            return
        aspect = find_aspect_ratio(name)
        # Shortcuts only exist in free-form mode
        self.selected_preset = CUSTOM_PRESET_NAME
        self.selected_aspect = name
        self.set_policy(apply_aspect_ratio(self.policy, aspect))

    def set_width(self, width) -> int:
        return self._edit_axis(width=width)

    def set_height(self, height) -> int:
        return self._edit_axis(height=height)

    def set_maintain_aspect_ratio(self, enabled: bool) -> int:
        if not enabled:
            self.selected_aspect = None
        return self.update_policy(maintain_aspect_ratio=bool(enabled))

    def set_quality(self, quality: float) -> int:
        return self.update_policy(quality=quality)

    def set_output_format(self, output_format) -> int:
        return self.update_policy(output_format=OutputFormat.parse(output_format))

    def _edit_axis(self, width=None, height=None) -> int:
        """Manual width/height edits switch to Custom and follow any active shortcut."""
        self.selected_preset = CUSTOM_PRESET_NAME
        aspect = find_aspect_ratio(self.selected_aspect) if self.selected_aspect else None
        return self.set_policy(link_axis(self.policy, aspect, width=width, height=height))

    # =========================================================================
    # Items
    # =========================================================================

    def add_source(self, source: SourceFile) -> str:
        return self.registry.add(source)

    def add_file(self, path: Path) -> str:
        """Measure and add one file.  Raises IngestionError if it cannot be read."""
        return self.registry.add(load_source(path))

    def add_bytes(self, name: str, data: bytes) -> str:
        return self.registry.add(load_bytes(name, data))

    def add_files(self, paths) -> tuple[list[str], dict[str, str]]:
        """Add many files; unreadable ones are reported, not raised.

        Returns ``(item_ids, {path: error})``.
        """
        added, rejected = [], {}
        for path in paths:
            try:
                added.append(self.add_file(path))
            except IngestionError as exc:
                logger.warning("Skipping %s: %s", path, exc)
                rejected[str(path)] = str(exc)
        return added, rejected

    def items(self) -> list[ItemView]:
        return self.registry.snapshot()

    def rotate_item(self, item_id: str, clockwise: bool = True):
        return self.registry.rotate(item_id, 90 if clockwise else -90)

    def set_override(self, item_id: str, width=None, height=None) -> Dimensions:
        """Override one item's size; calling with neither axis clears the override."""
        if width is None and height is None:
            return self.registry.set_override(item_id, None)
        current = self.registry.get(item_id).target_size
        override = Dimensions(
            coerce_dimension(width if width is not None else current.width),
            coerce_dimension(height if height is not None else current.height),
        )
        return self.registry.set_override(item_id, override)

    def remove_item(self, item_id: str) -> None:
        self.registry.remove(item_id)

    def clear_all(self) -> int:
        return self.registry.clear()

    # =========================================================================
    # Processing / packaging
    # =========================================================================

    def process_all(self, on_progress=None, skip_completed: bool = False) -> BatchReport:
        return self.processor.run(self.registry, on_progress=on_progress, skip_completed=skip_completed)

    def iter_process(self, skip_completed: bool = False):
        """Stream ProgressEvents for one pass."""
        return self.processor.iter_pass(self.registry, skip_completed=skip_completed)

    def build_archive(self, archive_name: str = DEFAULT_ARCHIVE_NAME, allow_empty: bool = False) -> bytes:
        """Package Completed items.  Raises EmptyArchiveError when there are none."""
        if not allow_empty and not self.registry.completed():
            raise EmptyArchiveError("no completed images to package")
        return self.packager.build_archive(self.registry, archive_name)

    def stats(self) -> BatchStats:
        return collect_stats(self.registry.snapshot(), self.policy.output_format, self.policy.quality)
