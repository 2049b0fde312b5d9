"""
Tests for the asynchronous operation tracker.

Operations run on real threads; tests that need to observe a RUNNING
operation hold it with a blocking progress sink (see conftest).
"""

import io
import os
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from PIL import Image

from mosaic_engine import (
    CallbackProgressSink,
    CsvResultRecorder,
    ImageIO,
    LoggingProgressSink,
    MosaicBuilder,
    MosaicError,
    MosaicRequest,
    MosaicType,
    NotFoundError,
    NotReadyError,
    OperationStatus,
    OperationTracker,
    PreviewNotAvailableError,
    ValidationError,
)

from conftest import RED

TIMEOUT = 30


def make_request(master, output, mosaic_type=MosaicType.COLOR, seeds=None, tile_size=10, **kwargs):
    return MosaicRequest(
        master_image_path=master,
        seed_directory_path=seeds,
        tile_size=tile_size,
        mosaic_type=mosaic_type,
        output_path=str(output),
        **kwargs,
    )


@pytest.fixture
def red_master(image_factory):
    return image_factory("red.png", 50, 50, RED)


@pytest.fixture
def tracker():
    tracker = OperationTracker(builder=MosaicBuilder(device="cpu"))
    yield tracker
    tracker.shutdown()


class TestSubmit:
    """Test request validation and successful operations."""

    def test_completed_operation(self, tracker, red_master, tmp_path):
        op_id = tracker.submit(make_request(red_master, tmp_path / "out.png"))
        operation = tracker.wait(op_id, timeout=TIMEOUT)

        assert operation.status is OperationStatus.COMPLETED
        assert operation.progress_percent == 100
        assert operation.result_path == str(tmp_path / "out.png")
        assert operation.error_message is None
        assert operation.result.tile_count == 25
        assert operation.started_at is not None and operation.finished_at is not None
        assert tracker.get_result(op_id) == operation.result_path
        assert os.path.exists(operation.result_path)

    def test_operation_ids_are_unique(self, tracker, red_master, tmp_path):
        ids = {tracker.submit(make_request(red_master, tmp_path / f"out{i}.png")) for i in range(3)}
        assert len(ids) == 3
        for op_id in ids:
            tracker.wait(op_id, timeout=TIMEOUT)

    def test_mosaic_type_given_as_text(self, tracker, master_path, seed_dir, tmp_path):
        op_id = tracker.submit(make_request(master_path, tmp_path / "out.png", "photo", seed_dir))
        operation = tracker.wait(op_id, timeout=TIMEOUT)

        assert operation.mosaic_type is MosaicType.PHOTO
        assert operation.status is OperationStatus.COMPLETED

    def test_validation_collects_all_errors(self, tracker, tmp_path):
        request = make_request(str(tmp_path / "missing.png"), tmp_path / "out.gif",
                               tile_size=0, quality=0)

        with pytest.raises(ValidationError) as excinfo:
            tracker.submit(request)

        errors = excinfo.value.errors
        assert len(errors) == 4
        assert any("Master image not found" in e for e in errors)
        assert tracker.list_operations() == []

    def test_validation_error_is_value_error(self, tracker, red_master, tmp_path):
        with pytest.raises(ValueError):
            tracker.submit(make_request(red_master, tmp_path / "out.png", tile_size=1001))

    def test_negative_seed_reuse_rejected(self, tracker, red_master, seed_dir, tmp_path):
        request = make_request(red_master, tmp_path / "out.png", MosaicType.PHOTO, seed_dir,
                               avoid_repetition=True, max_seed_reuse=-1)

        with pytest.raises(ValidationError) as excinfo:
            tracker.submit(request)
        assert "max_seed_reuse" in excinfo.value.errors[0]

    def test_unknown_mosaic_type(self, tracker, red_master, tmp_path):
        with pytest.raises(ValidationError):
            tracker.submit(make_request(red_master, tmp_path / "out.png", "mosaic"))

    def test_seed_directory_required(self, tracker, red_master, tmp_path):
        with pytest.raises(ValidationError) as excinfo:
            tracker.submit(make_request(red_master, tmp_path / "out.png", MosaicType.HUE))
        assert "seed_directory_path is required" in excinfo.value.errors[0]

    def test_seed_directory_without_images(self, tracker, red_master, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        (empty / "readme.txt").write_text("no images here")

        with pytest.raises(ValidationError):
            tracker.submit(make_request(red_master, tmp_path / "out.png", MosaicType.PHOTO, str(empty)))

    def test_unreadable_seed_directory(self, tracker, red_master, seed_dir, tmp_path, monkeypatch):
        monkeypatch.setattr("mosaic_engine.operation_tracker.is_readable",
                            lambda path: os.fspath(path) != seed_dir)

        with pytest.raises(ValidationError) as excinfo:
            tracker.submit(make_request(red_master, tmp_path / "out.png", MosaicType.PHOTO, seed_dir))

        assert excinfo.value.errors == [f"Seed directory is not readable: {seed_dir}"]
        assert tracker.list_operations() == []

    def test_seed_directory_listing_error(self, tracker, red_master, seed_dir, tmp_path, monkeypatch):
        def deny(directory):
            raise PermissionError(13, "Permission denied", str(directory))
        monkeypatch.setattr("mosaic_engine.operation_tracker.list_image_files", deny)

        with pytest.raises(ValidationError) as excinfo:
            tracker.submit(make_request(red_master, tmp_path / "out.png", MosaicType.HUE, seed_dir))

        assert len(excinfo.value.errors) == 1
        assert "cannot be listed" in excinfo.value.errors[0]

    @pytest.mark.skipif(not hasattr(os, "geteuid") or os.geteuid() == 0,
                        reason="needs a non-root POSIX user for permission checks")
    def test_seed_directory_without_permissions(self, tracker, red_master, seed_dir, tmp_path):
        os.chmod(seed_dir, 0)
        try:
            with pytest.raises(ValidationError):
                tracker.submit(make_request(red_master, tmp_path / "out.png", MosaicType.PHOTO, seed_dir))
        finally:
            os.chmod(seed_dir, 0o755)

    def test_unknown_id(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.get_status("does-not-exist")
        with pytest.raises(KeyError):
            tracker.cancel("does-not-exist")

    def test_progress_forwarded_in_order(self, red_master, tmp_path):
        reports = []
        sink = CallbackProgressSink(lambda op_id, percent, step: reports.append((op_id, percent)))

        with OperationTracker(progress_sink=sink) as tracker:
            op_id = tracker.submit(make_request(red_master, tmp_path / "out.png"))
            tracker.wait(op_id, timeout=TIMEOUT)

        percents = [percent for _, percent in reports]
        assert percents == sorted(percents)
        assert percents[-1] == 100
        assert {reported_id for reported_id, _ in reports} == {op_id}

    def test_submit_after_shutdown(self, red_master, tmp_path):
        tracker = OperationTracker()
        tracker.shutdown()

        with pytest.raises(MosaicError):
            tracker.submit(make_request(red_master, tmp_path / "out.png"))


class TestFailures:
    """Test that build errors end up on the operation."""

    def test_empty_catalog_fails(self, tracker, master_path, tmp_path):
        seeds = tmp_path / "broken_seeds"
        seeds.mkdir()
        (seeds / "broken.png").write_bytes(b"garbage")

        op_id = tracker.submit(make_request(master_path, tmp_path / "out.png", MosaicType.PHOTO, str(seeds)))
        operation = tracker.wait(op_id, timeout=TIMEOUT)

        assert operation.status is OperationStatus.FAILED
        assert operation.error_message.startswith("EmptyCatalogError:")
        assert operation.result_path is None
        assert not (tmp_path / "out.png").exists()

        with pytest.raises(NotReadyError):
            tracker.get_result(op_id)
        with pytest.raises(PreviewNotAvailableError):
            tracker.get_preview(op_id)
        assert tracker.cancel(op_id) is False

    def test_recorder_errors_do_not_fail_operation(self, red_master, tmp_path):
        class BrokenRecorder:
            def record(self, operation):
                raise OSError("disk full")

        with OperationTracker(recorder=BrokenRecorder()) as tracker:
            op_id = tracker.submit(make_request(red_master, tmp_path / "out.png"))
            assert tracker.wait(op_id, timeout=TIMEOUT).status is OperationStatus.COMPLETED


class TestCancellation:
    """Test cooperative cancellation."""

    def test_cancel_running(self, blocking_sink, image_factory, tmp_path):
        master = image_factory("big.png", 100, 100, RED)

        with OperationTracker(progress_sink=blocking_sink) as tracker:
            op_id = tracker.submit(make_request(master, tmp_path / "out.png"))
            assert blocking_sink.started.wait(TIMEOUT)

            assert tracker.get_status(op_id).status is OperationStatus.RUNNING
            assert tracker.cancel(op_id) is True
            assert tracker.cancel(op_id) is True
            assert tracker.get_status(op_id).cancellation_requested

            blocking_sink.release.set()
            operation = tracker.wait(op_id, timeout=TIMEOUT)

        assert operation.status is OperationStatus.CANCELLED
        assert operation.result_path is None
        assert operation.error_message is None
        assert operation.progress_percent < 100
        assert not (tmp_path / "out.png").exists()
        assert tracker.cancel(op_id) is False
        with pytest.raises(PreviewNotAvailableError):
            tracker.get_preview(op_id)

    def test_cancel_queued(self, blocking_sink, image_factory, tmp_path):
        master = image_factory("red.png", 50, 50, RED)

        with OperationTracker(max_concurrent_operations=1, progress_sink=blocking_sink) as tracker:
            first = tracker.submit(make_request(master, tmp_path / "first.png"))
            assert blocking_sink.started.wait(TIMEOUT)
            second = tracker.submit(make_request(master, tmp_path / "second.png"))

            assert tracker.get_status(second).status is OperationStatus.QUEUED
            assert tracker.active_count == 2
            with pytest.raises(PreviewNotAvailableError):
                tracker.get_preview(second)
            assert tracker.cancel(second) is True

            blocking_sink.release.set()
            assert tracker.wait(first, timeout=TIMEOUT).status is OperationStatus.COMPLETED
            assert tracker.wait(second, timeout=TIMEOUT).status is OperationStatus.CANCELLED

        assert not (tmp_path / "second.png").exists()

    def test_shutdown_waits_for_active_operations(self, blocking_sink, image_factory, tmp_path):
        master = image_factory("red.png", 50, 50, RED)
        tracker = OperationTracker(progress_sink=blocking_sink)
        op_id = tracker.submit(make_request(master, tmp_path / "out.png"))
        assert blocking_sink.started.wait(TIMEOUT)

        blocking_sink.release.set()
        tracker.shutdown(cancel_running=True, wait=True)

        assert tracker.get_status(op_id).status.is_terminal


class TestPreview:
    """Test preview thumbnails."""

    @staticmethod
    def size_of(data):
        with Image.open(io.BytesIO(data)) as image:
            return image.size

    def test_preview_while_running(self, blocking_sink, image_factory, tmp_path):
        master = image_factory("wide.png", 200, 100, RED)

        with OperationTracker(progress_sink=blocking_sink, preview_size=(40, 30)) as tracker:
            op_id = tracker.submit(make_request(master, tmp_path / "out.png"))
            assert blocking_sink.started.wait(TIMEOUT)

            data = tracker.get_preview(op_id)
            blocking_sink.release.set()
            tracker.wait(op_id, timeout=TIMEOUT)

        assert data[:2] == b"\xff\xd8"
        assert self.size_of(data) == (40, 20)

    def test_milestone_refreshes_cached_preview(self, image_factory, tmp_path):
        """Crossing 25% renders a preview before anyone asks for one."""
        class CountingImageIO(ImageIO):
            def __init__(self):
                super().__init__()
                self.thumbnails = 0

            def create_thumbnail(self, *args, **kwargs):
                self.thumbnails += 1
                return super().create_thumbnail(*args, **kwargs)

        class HoldAtSink:
            def __init__(self, percent):
                self.percent = percent
                self.reached = threading.Event()
                self.release = threading.Event()

            def report(self, operation_id, percent, step):
                if percent >= self.percent and not self.reached.is_set():
                    self.reached.set()
                    self.release.wait(TIMEOUT)

        image_io = CountingImageIO()
        sink = HoldAtSink(30)
        master = image_factory("big.png", 100, 100, RED)
        builder = MosaicBuilder(image_io=image_io, max_workers=1, device="cpu")

        with OperationTracker(builder=builder, progress_sink=sink) as tracker:
            op_id = tracker.submit(make_request(master, tmp_path / "out.png"))
            try:
                assert sink.reached.wait(TIMEOUT)
                assert image_io.thumbnails == 1
                assert tracker.get_status(op_id).status is OperationStatus.RUNNING
            finally:
                sink.release.set()
            tracker.wait(op_id, timeout=TIMEOUT)

        assert image_io.thumbnails == 3

    def test_preview_when_completed(self, tracker, image_factory, tmp_path):
        master = image_factory("big.png", 800, 600, RED)
        op_id = tracker.submit(make_request(master, tmp_path / "out.png", tile_size=100))
        tracker.wait(op_id, timeout=TIMEOUT)

        data = tracker.get_preview(op_id)
        assert self.size_of(data) == (400, 300)
        assert tracker.get_preview(op_id) == data

        with Image.open(io.BytesIO(data)) as image:
            pixels = np.array(image.convert("RGB")).astype(int)
        assert np.all(np.abs(pixels - RED) <= 8)


class TestHousekeeping:
    """Test eviction of finished operations and result recording."""

    @staticmethod
    def fixed_clock(start=1000.0):
        now = [start]
        return now, (lambda: now[0])

    def test_grace_period_eviction(self, red_master, tmp_path):
        now, clock = self.fixed_clock()
        with OperationTracker(clock=clock, retention_seconds=3600, grace_seconds=60) as tracker:
            op_id = tracker.submit(make_request(red_master, tmp_path / "out.png"))
            tracker.wait(op_id, timeout=TIMEOUT)

            assert tracker.cleanup(now=1030.0) == 0
            assert tracker.cleanup(now=1061.0) == 1
            with pytest.raises(NotFoundError):
                tracker.get_status(op_id)

    def test_retention_eviction(self, red_master, tmp_path):
        now, clock = self.fixed_clock()
        with OperationTracker(clock=clock, retention_seconds=5, grace_seconds=3600) as tracker:
            op_id = tracker.submit(make_request(red_master, tmp_path / "out.png"))
            tracker.wait(op_id, timeout=TIMEOUT)

            now[0] = 1006.0
            assert tracker.cleanup() == 1
            assert tracker.list_operations() == []

    def test_running_operations_never_evicted(self, blocking_sink, red_master, tmp_path):
        with OperationTracker(progress_sink=blocking_sink, retention_seconds=0, grace_seconds=0) as tracker:
            op_id = tracker.submit(make_request(red_master, tmp_path / "out.png"))
            assert blocking_sink.started.wait(TIMEOUT)

            assert tracker.cleanup(now=10 ** 12) == 0
            assert tracker.remove(op_id) is False
            assert tracker.get_status(op_id).status is OperationStatus.RUNNING

            blocking_sink.release.set()
            tracker.wait(op_id, timeout=TIMEOUT)
            assert tracker.remove(op_id) is True

        with pytest.raises(NotFoundError):
            tracker.get_status(op_id)

    def test_submit_runs_cleanup(self, red_master, tmp_path):
        now, clock = self.fixed_clock()
        with OperationTracker(clock=clock, grace_seconds=10) as tracker:
            first = tracker.submit(make_request(red_master, tmp_path / "a.png"))
            tracker.wait(first, timeout=TIMEOUT)

            now[0] = 1100.0
            second = tracker.submit(make_request(red_master, tmp_path / "b.png"))
            assert [op.id for op in tracker.list_operations()] == [second]
            tracker.wait(second, timeout=TIMEOUT)

    def test_logging_sink_forgets_finished_operations(self, red_master, master_path, tmp_path):
        broken = tmp_path / "broken_seeds"
        broken.mkdir()
        (broken / "broken.png").write_bytes(b"garbage")
        sink = LoggingProgressSink()

        with OperationTracker(progress_sink=sink) as tracker:
            completed = tracker.submit(make_request(red_master, tmp_path / "out.png"))
            failed = tracker.submit(make_request(master_path, tmp_path / "failed.png",
                                                 MosaicType.PHOTO, str(broken)))
            assert tracker.wait(completed, timeout=TIMEOUT).status is OperationStatus.COMPLETED
            assert tracker.wait(failed, timeout=TIMEOUT).status is OperationStatus.FAILED

        assert sink.tracked_operations == 0

    def test_csv_recorder(self, red_master, tmp_path):
        recorder = CsvResultRecorder(tmp_path / "history" / "operations.csv")
        executor = ThreadPoolExecutor(max_workers=1)

        with OperationTracker(executor=executor, recorder=recorder) as tracker:
            first = tracker.submit(make_request(red_master, tmp_path / "out.png"))
            tracker.wait(first, timeout=TIMEOUT)
            again = tracker.submit(make_request(red_master, tmp_path / "again.png"))
            tracker.wait(again, timeout=TIMEOUT)
        executor.shutdown()

        history = recorder.load()
        assert list(history["id"]) == [first, again]
        assert list(history["status"]) == ["completed", "completed"]
        assert history["tile-count"].iloc[0] == 25
