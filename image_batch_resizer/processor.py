"""
Batch processor - encodes every pending registry item through the codec.

A pass snapshots the registry's item ids, then handles them one by one
(or, with ``workers > 1``, a bounded number at a time in a process pool).
Each item's failure is recorded on that item only; the pass always moves
on.  Progress is reported as the share of snapshotted items handled so
far, so it never decreases and ends at exactly 100.

``encode_worker`` is imported in child processes spawned by
``concurrent.futures.ProcessPoolExecutor``.  It takes and returns plain
dicts and must stay free of registry or Qt imports.
"""

import logging
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from dataclasses import dataclass, field
from threading import Event, Lock

from image_batch_resizer.codec import PillowCodec
from image_batch_resizer.config import DEFAULT_WORKERS
from image_batch_resizer.models import Dimensions, ItemStatus, OutputFormat, RotationAngle
from image_batch_resizer.registry import ItemRegistry, RenderJob

logger = logging.getLogger(__name__)


class BatchAlreadyRunning(RuntimeError):
    """A second pass was started while one is still running."""


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted after each snapshotted item is handled."""
    item_id: str | None
    status: ItemStatus | None  # None when the item was skipped
    handled: int
    total: int
    percent: float
    error: str | None = None


@dataclass
class BatchReport:
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: dict = field(default_factory=dict)  # item_id -> message

    def record(self, event: ProgressEvent) -> None:
        if event.item_id is None:
            return
        if event.status is ItemStatus.COMPLETED:
            self.completed += 1
        elif event.status is ItemStatus.ERROR:
            self.failed += 1
            self.errors[event.item_id] = event.error
        else:
            self.skipped += 1


def encode_worker(args: dict) -> dict:
    """Worker function for one encode. May run in a separate process."""
    item_id = args["id"]
    name = args["name"]
    try:
        data = args["codec"].render(
            args["source"].read(),
            Dimensions(*args["target"]),
            RotationAngle(args["rotation"]),
            OutputFormat(args["format"]),
            args["quality"],
        )
        return {"id": item_id, "success": True, "name": name, "data": data}
    except Exception as e:
        return {"id": item_id, "success": False, "name": name, "error": str(e) or type(e).__name__}


class BatchProcessor:
    """Drives encode passes over an ItemRegistry; at most one pass at a time."""

    def __init__(self, codec=None, workers: int = DEFAULT_WORKERS, executor_factory=None):
        self.codec = codec or PillowCodec()
        self.workers = max(1, int(workers))
        self._executor_factory = executor_factory or ProcessPoolExecutor
        self._pass_lock = Lock()
        self._cancel = Event()

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    def cancel(self) -> None:
        """Stop the running pass before its next item starts encoding."""
        self._cancel.set()

    def run(self, registry: ItemRegistry, on_progress=None, skip_completed: bool = False) -> BatchReport:
        """Run one full pass; ``on_progress`` receives each ProgressEvent."""
        report = BatchReport(total=len(registry))
        handled = 0
        stream = self.iter_pass(registry, skip_completed=skip_completed)
        try:
            for event in stream:
                report.total = event.total
                handled = event.handled
                report.record(event)
                if on_progress is not None:
                    on_progress(event)
        finally:
            stream.close()
        report.cancelled = handled < report.total
        logger.info(
            "Batch pass finished: %d completed, %d failed, %d skipped%s",
            report.completed, report.failed, report.skipped,
            " (cancelled)" if report.cancelled else "",
        )
        return report

    def iter_pass(self, registry: ItemRegistry, skip_completed: bool = False):
        """Generator form of a pass.

        Raises BatchAlreadyRunning on first iteration if another pass holds
        the processor.  *skip_completed* leaves items that are already
        Completed untouched instead of re-encoding them.
        """
        if not self._pass_lock.acquire(blocking=False):
            raise BatchAlreadyRunning("a batch pass is already running")
        try:
            self._cancel.clear()
            ids = registry.ids()
            total = len(ids)
            logger.info("Starting batch pass over %d item(s) with %d worker(s)", total, self.workers)
            if total == 0:
                yield ProgressEvent(None, None, 0, 0, 100.0)
                return

            runner = self._run_sequential if self.workers == 1 else self._run_parallel
            handled = 0
            steps = runner(registry, ids, skip_completed)
            try:
                for item_id, status, error in steps:
                    handled += 1
                    yield ProgressEvent(item_id, status, handled, total, handled / total * 100, error)
            finally:
                steps.close()
        finally:
            self._pass_lock.release()

    # =========================================================================
    # Runners: yield (item_id, final status or None, error) per handled item
    # =========================================================================

    def _run_sequential(self, registry: ItemRegistry, ids: list[str], skip_completed: bool):
        for item_id in ids:
            if self._cancel.is_set():
                logger.info("Batch pass cancelled")
                return
            job = registry.begin_processing(item_id, skip_completed=skip_completed)
            if job is None:
                yield item_id, None, None
                continue
            result = encode_worker(self._job_args(job))
            yield item_id, self._settle(registry, job, result), result.get("error")

    def _run_parallel(self, registry: ItemRegistry, ids: list[str], skip_completed: bool):
        remaining = iter(ids)
        in_flight = {}
        with self._executor_factory(max_workers=self.workers) as executor:
            try:
                while True:
                    while len(in_flight) < self.workers and not self._cancel.is_set():
                        item_id = next(remaining, None)
                        if item_id is None:
                            break
                        job = registry.begin_processing(item_id, skip_completed=skip_completed)
                        if job is None:
                            yield item_id, None, None
                            continue
                        try:
                            in_flight[executor.submit(encode_worker, self._job_args(job))] = job
                        except Exception as e:  # pool already broken or shut down
                            result = {"id": job.item_id, "success": False, "name": job.name, "error": str(e)}
                            yield job.item_id, self._settle(registry, job, result), result["error"]

                    if not in_flight:
                        if self._cancel.is_set():
                            logger.info("Batch pass cancelled")
                        return

                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    for future in done:
                        job = in_flight.pop(future)
                        try:
                            result = future.result()
                        except Exception as e:  # worker crash or pickling failure
                            result = {"id": job.item_id, "success": False, "name": job.name, "error": str(e)}
                        yield job.item_id, self._settle(registry, job, result), result.get("error")
            finally:
                # Consumer stopped early: nothing will settle these, so hand them back
                for future, job in in_flight.items():
                    future.cancel()
                    registry.abandon_processing(job)

    def _job_args(self, job: RenderJob) -> dict:
        """Build serializable arguments for encode_worker."""
        return {
            "id": job.item_id,
            "name": job.name,
            "source": job.source,
            "target": job.target.as_tuple(),
            "rotation": int(job.rotation),
            "format": job.output_format.value,
            "quality": job.quality,
            "codec": self.codec,
        }

    def _settle(self, registry: ItemRegistry, job: RenderJob, result: dict) -> ItemStatus | None:
        if result["success"]:
            return registry.finish_processing(job, result["data"])
        logger.warning("Failed to encode %s (%s): %s", job.name, job.item_id, result["error"])
        return registry.fail_processing(job, result["error"])
