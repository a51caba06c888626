"""
Tests for the batch processor
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import FakeCodec, fake_source
from image_batch_resizer.models import Dimensions, ItemStatus, OutputFormat, ResizePolicy, RotationAngle
from image_batch_resizer.processor import BatchAlreadyRunning, BatchProcessor, encode_worker
from image_batch_resizer.registry import ItemRegistry


def fill(registry, *names):
    return [registry.add(fake_source(name)) for name in names]


class TestSequentialPass:
    """Test one-at-a-time processing"""

    def test_all_items_completed(self, registry, processor, codec):
        ids = fill(registry, "a.jpg", "b.jpg", "c.jpg")
        report = processor.run(registry)
        assert report.completed == 3
        assert report.failed == 0
        assert not report.cancelled
        assert [registry.get(i).status for i in ids] == [ItemStatus.COMPLETED] * 3
        assert [call[0] for call in codec.calls] == ["a.jpg", "b.jpg", "c.jpg"]

    def test_codec_receives_item_inputs(self, registry, processor, codec):
        registry.apply_policy(ResizePolicy(target_width=800, quality=0.7, output_format="webp"))
        (item_id,) = fill(registry, "a.jpg")
        registry.rotate(item_id)
        processor.run(registry)
        name, target, rotation, output_format, quality = codec.calls[0]
        assert target == Dimensions(800, 600)
        assert rotation is RotationAngle.DEG_90
        assert output_format is OutputFormat.WEBP
        assert quality == 0.7

    def test_failure_is_isolated(self, registry):
        codec = FakeCodec(fail_on={"bad.jpg"})
        processor = BatchProcessor(codec=codec)
        good_a, bad, good_b = fill(registry, "a.jpg", "bad.jpg", "b.jpg")
        report = processor.run(registry)
        assert registry.get(bad).status is ItemStatus.ERROR
        assert "cannot decode bad.jpg" in registry.get(bad).error
        assert registry.get(good_a).status is ItemStatus.COMPLETED
        assert registry.get(good_b).status is ItemStatus.COMPLETED
        assert report.failed == 1
        assert report.errors == {bad: "cannot decode bad.jpg"}

    def test_progress_monotonic_and_ends_at_100(self, registry, processor):
        fill(registry, *(f"{n}.jpg" for n in range(7)))
        events = []
        processor.run(registry, on_progress=events.append)
        percents = [e.percent for e in events]
        assert len(percents) == 7
        assert percents == sorted(percents)
        assert percents[-1] == 100.0
        assert events[-1].handled == events[-1].total == 7

    def test_empty_registry_reports_100(self, registry, processor):
        events = list(processor.iter_pass(registry))
        assert [e.percent for e in events] == [100.0]
        assert processor.run(registry).total == 0

    def test_completed_items_reencoded_every_pass(self, registry, processor, codec):
        fill(registry, "a.jpg")
        processor.run(registry)
        report = processor.run(registry)
        assert report.completed == 1
        assert report.skipped == 0
        assert len(codec.calls) == 2

    def test_skip_completed_leaves_them(self, registry, processor, codec):
        fill(registry, "a.jpg", "b.jpg")
        processor.run(registry)
        codec.calls.clear()
        report = processor.run(registry, skip_completed=True)
        assert codec.calls == []
        assert report.skipped == 2

    def test_error_items_retried_next_pass(self, registry):
        codec = FakeCodec(fail_on={"a.jpg"})
        processor = BatchProcessor(codec=codec)
        (item_id,) = fill(registry, "a.jpg")
        processor.run(registry)
        codec.fail_on.clear()
        processor.run(registry)
        assert registry.get(item_id).status is ItemStatus.COMPLETED

    def test_snapshot_excludes_items_added_mid_pass(self, registry):
        added = []

        def add_during_render(name):
            if not added:
                added.append(registry.add(fake_source("late.jpg")))

        processor = BatchProcessor(codec=FakeCodec(on_render=add_during_render))
        fill(registry, "a.jpg", "b.jpg")
        report = processor.run(registry)
        assert report.total == 2
        assert registry.get(added[0]).status is ItemStatus.PENDING

    def test_released_source_fails_only_that_item(self, registry, processor):
        a, b = fill(registry, "a.jpg", "b.jpg")
        # simulate a handle released behind the registry's back
        registry._items[a].source.release()
        processor.run(registry)
        assert registry.get(a).status is ItemStatus.ERROR
        assert registry.get(b).status is ItemStatus.COMPLETED


class TestPassControl:
    """Test single-pass exclusivity and cancellation"""

    def test_second_pass_rejected_while_running(self, registry, processor):
        fill(registry, "a.jpg", "b.jpg")
        first = processor.iter_pass(registry)
        next(first)
        assert processor.running
        with pytest.raises(BatchAlreadyRunning):
            processor.run(registry)
        list(first)
        assert not processor.running

    def test_cancel_between_items(self, registry):
        processor = BatchProcessor(codec=FakeCodec(on_render=lambda name: processor.cancel()))
        a, b, c = fill(registry, "a.jpg", "b.jpg", "c.jpg")
        report = processor.run(registry)
        assert report.cancelled
        assert registry.get(a).status is ItemStatus.COMPLETED
        assert registry.get(b).status is ItemStatus.PENDING
        assert registry.get(c).status is ItemStatus.PENDING

    def test_policy_change_mid_pass_last_policy_wins(self, registry):
        def change_policy(name):
            if name == "b.jpg":
                registry.apply_policy(ResizePolicy(target_width=500))

        processor = BatchProcessor(codec=FakeCodec(on_render=change_policy))
        a, b, c = fill(registry, "a.jpg", "b.jpg", "c.jpg")
        processor.run(registry)
        # a finished before the change, b was in flight: both need a new encode
        assert registry.get(a).status is ItemStatus.PENDING
        assert registry.get(b).status is ItemStatus.PENDING
        assert registry.get(c).status is ItemStatus.COMPLETED
        assert registry.get(c).target_size.width == 500


class TestParallelPass:
    """Test bounded parallel encoding"""

    def test_thread_pool_isolation_and_progress(self):
        registry = ItemRegistry()
        codec = FakeCodec(fail_on={"3.jpg"})
        processor = BatchProcessor(codec=codec, workers=3, executor_factory=ThreadPoolExecutor)
        ids = fill(registry, *(f"{n}.jpg" for n in range(8)))
        events = []
        report = processor.run(registry, on_progress=events.append)
        percents = [e.percent for e in events]
        assert percents == sorted(percents)
        assert percents[-1] == 100.0
        assert report.completed == 7
        assert report.failed == 1
        assert registry.get(ids[3]).status is ItemStatus.ERROR
        assert sorted(call[0] for call in codec.calls) == sorted(f"{n}.jpg" for n in range(8))

    def test_closing_stream_early_leaves_nothing_processing(self):
        registry = ItemRegistry()
        processor = BatchProcessor(codec=FakeCodec(), workers=3, executor_factory=ThreadPoolExecutor)
        ids = fill(registry, *(f"{n}.jpg" for n in range(6)))
        stream = processor.iter_pass(registry)
        next(stream)
        stream.close()
        assert not processor.running
        assert ItemStatus.PROCESSING not in {registry.get(i).status for i in ids}

        report = processor.run(registry)
        assert report.completed == 6
        assert [registry.get(i).status for i in ids] == [ItemStatus.COMPLETED] * 6

    def test_failing_progress_callback_releases_in_flight_items(self):
        registry = ItemRegistry()
        processor = BatchProcessor(codec=FakeCodec(), workers=2, executor_factory=ThreadPoolExecutor)
        ids = fill(registry, *(f"{n}.jpg" for n in range(4)))

        def stop(event):
            raise RuntimeError("view closed")

        with pytest.raises(RuntimeError, match="view closed"):
            processor.run(registry, on_progress=stop)
        assert not processor.running
        assert ItemStatus.PROCESSING not in {registry.get(i).status for i in ids}
        assert processor.run(registry).completed == 4


class TestEncodeWorker:
    """Test the picklable worker function"""

    def test_success_and_failure_dicts(self):
        source = fake_source("a.jpg").handle
        args = {
            "id": "img_0001", "name": "a.jpg", "source": source, "target": (10, 20),
            "rotation": 0, "format": "png", "quality": 0.5, "codec": FakeCodec(),
        }
        result = encode_worker(args)
        assert result["success"] is True
        assert result["data"] == b"a.jpg:10x20:0:png"

        args["codec"] = FakeCodec(fail_on={"a.jpg"})
        result = encode_worker(args)
        assert result == {"id": "img_0001", "success": False, "name": "a.jpg", "error": "cannot decode a.jpg"}
