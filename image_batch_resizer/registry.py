"""
Item registry - owns every tracked image and its lifecycle state.

All item mutations happen here, under one reentrant lock, so a reader on
another thread always sees an item's status and result change together.
The batch processor talks to the registry through ``begin_processing`` /
``finish_processing`` / ``fail_processing``; policy, rotation and override
changes go through ``apply_policy`` / ``rotate`` / ``set_override``, which
recompute ``target_size`` and invalidate stale results.
"""

import itertools
import logging
from dataclasses import dataclass
from threading import RLock

from image_batch_resizer.image_io import SourceFile, SourceHandle
from image_batch_resizer.models import (
    Dimensions, EncodedResult, ImageItem, ItemStatus, ItemView, OutputFormat,
    ResizePolicy, RotationAngle, can_transition, canvas_size, compute_target_size,
)

logger = logging.getLogger(__name__)

# Shared by every registry so an id is never handed out twice in one process
_ID_COUNTER = itertools.count(1)


class InvalidTransition(RuntimeError):
    """An item was asked to move to a status its current status does not allow."""


@dataclass(frozen=True)
class RenderJob:
    """Everything the codec needs for one item, captured when it enters Processing."""
    item_id: str
    name: str
    source: SourceHandle
    target: Dimensions
    rotation: RotationAngle
    output_format: OutputFormat
    quality: float
    revision: int


class ItemRegistry:
    """Ordered, thread-safe collection of ImageItems"""

    def __init__(self, policy: ResizePolicy | None = None):
        self._policy = policy or ResizePolicy()
        self._items: dict[str, ImageItem] = {}
        self.lock = RLock()

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def policy(self) -> ResizePolicy:
        return self._policy

    def __len__(self) -> int:
        with self.lock:
            return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        with self.lock:
            return item_id in self._items

    def ids(self) -> list[str]:
        with self.lock:
            return list(self._items)

    def get(self, item_id: str) -> ItemView:
        with self.lock:
            return self._require(item_id).view()

    def snapshot(self) -> list[ItemView]:
        """Read-only views of all items, in insertion order."""
        with self.lock:
            return [item.view() for item in self._items.values()]

    def completed(self) -> list[tuple[ItemView, EncodedResult]]:
        """Completed items with their encoded results, in insertion order."""
        with self.lock:
            return [
                (item.view(), item.result)
                for item in self._items.values()
                if item.status is ItemStatus.COMPLETED
            ]

    def count_by_status(self) -> dict[ItemStatus, int]:
        with self.lock:
            counts = {status: 0 for status in ItemStatus}
            for item in self._items.values():
                counts[item.status] += 1
            return counts

    # =========================================================================
    # Ingestion / removal
    # =========================================================================

    def add(self, source: SourceFile) -> str:
        """Track a newly accepted source; returns the new item id."""
        with self.lock:
            item_id = f"img_{next(_ID_COUNTER):04d}"
            item = ImageItem(
                id=item_id,
                name=source.name,
                source=source.handle,
                original_size=source.original_size,
                target_size=compute_target_size(source.original_size, self._policy),
            )
            self._items[item_id] = item
            logger.debug("Added %s (%s, %s -> %s)", item_id, item.name, item.original_size, item.target_size)
            return item_id

    def remove(self, item_id: str) -> None:
        """Release the item's source and result, and forget it."""
        with self.lock:
            item = self._items.pop(item_id, None)
            if item is None:
                raise KeyError(item_id)
            self._release(item)
            logger.debug("Removed %s", item_id)

    def clear(self) -> int:
        """Release and forget every item; returns how many were removed."""
        with self.lock:
            count = len(self._items)
            for item in self._items.values():
                self._release(item)
            self._items.clear()
            logger.debug("Cleared %d item(s)", count)
            return count

    # =========================================================================
    # Geometry changes (invalidating)
    # =========================================================================

    def apply_policy(self, policy: ResizePolicy) -> int:
        """Adopt a new policy, recompute every item and invalidate stale results.

        Returns the number of Completed items reverted to Pending.  Items in
        Processing keep running; their result is discarded on arrival.
        """
        with self.lock:
            if policy == self._policy:
                return 0
            self._policy = policy
            invalidated = 0
            for item in self._items.values():
                if self._invalidate(item):
                    invalidated += 1
            logger.debug("Policy changed; %d completed item(s) invalidated", invalidated)
            return invalidated

    def rotate(self, item_id: str, degrees: int = 90) -> RotationAngle:
        """Rotate one item clockwise by *degrees* (negative for counter-clockwise)."""
        with self.lock:
            item = self._require(item_id)
            item.rotation = item.rotation.rotated(degrees)
            self._invalidate(item, reset_error=True)
            return item.rotation

    def set_override(self, item_id: str, override: Dimensions | None) -> Dimensions:
        """Set or clear a per-item size override; returns the new target size."""
        with self.lock:
            item = self._require(item_id)
            item.override = override
            self._invalidate(item, reset_error=True)
            return item.target_size

    # =========================================================================
    # Batch processor hooks
    # =========================================================================

    def begin_processing(self, item_id: str, skip_completed: bool = False) -> RenderJob | None:
        """Move an item into Processing and capture its render inputs.

        Returns None when the item is gone, already Processing, or Completed
        while *skip_completed* is set, so the caller simply skips it.
        """
        with self.lock:
            item = self._items.get(item_id)
            if item is None or item.status is ItemStatus.PROCESSING:
                return None
            if item.status is ItemStatus.COMPLETED and skip_completed:
                return None
            self._transition(item, ItemStatus.PROCESSING)
            item.result = None
            item.error = None
            return RenderJob(
                item_id=item.id,
                name=item.name,
                source=item.source,
                target=item.target_size,
                rotation=item.rotation,
                output_format=self._policy.output_format,
                quality=self._policy.quality,
                revision=item.revision,
            )

    def finish_processing(self, job: RenderJob, data: bytes) -> ItemStatus | None:
        """Store an encode result.  Stale results send the item back to Pending."""
        with self.lock:
            item = self._items.get(job.item_id)
            if item is None:
                logger.debug("Dropping result for removed item %s", job.item_id)
                return None
            if item.revision != job.revision:
                logger.debug("Discarding stale result for %s", item.id)
                self._transition(item, ItemStatus.PENDING)
                return item.status
            item.result = EncodedResult(data, job.output_format, canvas_size(job.target, job.rotation))
            self._transition(item, ItemStatus.COMPLETED)
            return item.status

    def fail_processing(self, job: RenderJob, error: str) -> ItemStatus | None:
        with self.lock:
            item = self._items.get(job.item_id)
            if item is None:
                return None
            if item.revision != job.revision:
                self._transition(item, ItemStatus.PENDING)
                return item.status
            item.error = error
            self._transition(item, ItemStatus.ERROR)
            return item.status

    def abandon_processing(self, job: RenderJob) -> ItemStatus | None:
        """Return an item whose encode will never be settled to Pending."""
        with self.lock:
            item = self._items.get(job.item_id)
            if item is None or item.status is not ItemStatus.PROCESSING:
                return None
            logger.debug("Abandoning in-flight encode for %s", item.id)
            self._transition(item, ItemStatus.PENDING)
            return item.status

    # =========================================================================
    # Internals
    # =========================================================================

    def _require(self, item_id: str) -> ImageItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise KeyError(f"unknown item {item_id!r}") from None

    def _transition(self, item: ImageItem, new: ItemStatus) -> None:
        if not can_transition(item.status, new):
            raise InvalidTransition(f"{item.id}: {item.status.value} -> {new.value} is not allowed")
        logger.debug("%s: %s -> %s", item.id, item.status.value, new.value)
        item.status = new

    def _invalidate(self, item: ImageItem, reset_error: bool = False) -> bool:
        """Recompute target size and drop any encoded result.

        Returns True if the item was Completed and is now Pending.
        """
        item.target_size = compute_target_size(
            item.original_size, self._policy, item.rotation, item.override,
        )
        item.revision += 1
        item.result = None
        if item.status is ItemStatus.COMPLETED:
            self._transition(item, ItemStatus.PENDING)
            return True
        if reset_error and item.status is ItemStatus.ERROR:
            item.error = None
            self._transition(item, ItemStatus.PENDING)
        return False

    def _release(self, item: ImageItem) -> None:
        item.result = None
        item.source.release()
