"""
Operation tracker module - asynchronous mosaic jobs.

This module provides the OperationTracker class that accepts mosaic requests,
runs them in the background and answers status, cancellation, preview and
result queries by operation id.

Classes:
    OperationTracker: Registry and scheduler of mosaic operations
"""

import dataclasses
import os
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import (
    MAX_CONCURRENT_OPERATIONS,
    OPERATION_RETENTION_SECONDS,
    PREVIEW_MAX_SIZE,
    PREVIEW_MILESTONES,
    SUPPORTED_IMAGE_FORMATS,
    TERMINAL_GRACE_SECONDS,
    resolve_output_format,
    validate_max_seed_reuse,
    validate_mosaic_type,
    validate_quality,
    validate_tile_size,
)
from .exceptions import (
    InternalError,
    MosaicError,
    NotFoundError,
    NotReadyError,
    OperationCancelledError,
    PreviewNotAvailableError,
    ResourceError,
    ValidationError,
)
from .models import (
    CancellationToken,
    MosaicOperation,
    MosaicRequest,
    MosaicResult,
    MosaicType,
    OperationStatus,
)
from .mosaic_builder import MosaicBuilder
from .persistence import ResultRecorder
from .progress import CallbackProgressSink, LoggingProgressSink, ProgressSink
from .utils import generate_operation_id, is_readable, list_image_files, logger


class _OperationRecord:
    """Mutable state of one operation. Guarded by the tracker's lock."""

    def __init__(self, operation_id: str, request: MosaicRequest, created_at: float):
        self.id = operation_id
        self.request = request
        self.status = OperationStatus.QUEUED
        self.progress = 0
        self.step = "queued"
        self.token = CancellationToken()
        self.created_at = created_at
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.result: Optional[MosaicResult] = None
        self.error_message: Optional[str] = None
        self.canvas: Optional[np.ndarray] = None
        self.preview: Optional[bytes] = None
        self.last_milestone = 0
        self.future: Optional[Future] = None
        self.done = threading.Event()

    def snapshot(self) -> MosaicOperation:
        completed = self.status is OperationStatus.COMPLETED
        return MosaicOperation(
            id=self.id,
            mosaic_type=self.request.mosaic_type,
            status=self.status,
            progress_percent=self.progress,
            current_step=self.step,
            cancellation_requested=self.token.is_cancellation_requested,
            created_at=self.created_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            result_path=self.result.output_path if completed and self.result else None,
            error_message=self.error_message if self.status is OperationStatus.FAILED else None,
            result=self.result if completed else None,
        )


class OperationTracker:
    """
    Runs mosaic builds in the background and tracks them by id.

    Each operation moves QUEUED -> RUNNING -> COMPLETED / FAILED / CANCELLED
    and never leaves a terminal state. Build errors never propagate to
    callers; they are recorded on the operation instead. Query methods raise
    only NotFoundError, NotReadyError and PreviewNotAvailableError.

    Finished operations are kept for ``retention_seconds`` after creation and
    ``grace_seconds`` after finishing, whichever ends first; ``cleanup`` (also
    run on every submit) evicts them afterwards.

    Attributes:
        builder: Builds the mosaics
        image_io: Image collaborator used for previews
        retention_seconds: Maximum age of a finished operation
        grace_seconds: How long a finished operation stays queryable
        preview_size: Maximum (width, height) of preview thumbnails
        preview_milestones: Progress percentages that refresh the cached preview

    Example:
        >>> tracker = OperationTracker()
        >>> op_id = tracker.submit(request)
        >>> tracker.get_status(op_id).status
        <OperationStatus.RUNNING: 'running'>
        >>> tracker.wait(op_id).status
        <OperationStatus.COMPLETED: 'completed'>
        >>> tracker.get_result(op_id)
        'out/mosaic.jpg'
    """

    def __init__(self,
                 builder: Optional[MosaicBuilder] = None,
                 executor: Optional[Executor] = None,
                 max_concurrent_operations: int = MAX_CONCURRENT_OPERATIONS,
                 progress_sink: Optional[ProgressSink] = None,
                 recorder: Optional[ResultRecorder] = None,
                 retention_seconds: float = OPERATION_RETENTION_SECONDS,
                 grace_seconds: float = TERMINAL_GRACE_SECONDS,
                 preview_size: Tuple[int, int] = PREVIEW_MAX_SIZE,
                 preview_milestones: Sequence[int] = PREVIEW_MILESTONES,
                 clock: Callable[[], float] = time.time):
        self.builder = builder or MosaicBuilder()
        self.image_io = self.builder.image_io
        self.progress_sink = progress_sink or LoggingProgressSink()
        self.recorder = recorder
        self.retention_seconds = retention_seconds
        self.grace_seconds = grace_seconds
        self.preview_size = preview_size
        self.preview_milestones = tuple(sorted(preview_milestones))
        self._clock = clock

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_concurrent_operations, thread_name_prefix="mosaic-op"
        )

        self._operations: Dict[str, _OperationRecord] = {}
        self._lock = threading.Lock()
        self._closed = False

        logger.info(
            f"Initialized OperationTracker (max {max_concurrent_operations} concurrent operations)"
            if self._owns_executor else "Initialized OperationTracker with external executor"
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate(self, request: MosaicRequest) -> MosaicType:
        """
        Check a request before an operation is created.

        Returns:
            MosaicType: The parsed mosaic type

        Raises:
            ValidationError: With every problem found
        """
        errors: List[str] = []

        mosaic_type = None
        try:
            validate_mosaic_type(request.mosaic_type)
            mosaic_type = MosaicType.parse(request.mosaic_type)
        except ValueError as e:
            errors.append(str(e))

        for check in (lambda: validate_tile_size(request.tile_size),
                      lambda: validate_quality(request.quality),
                      lambda: validate_max_seed_reuse(request.max_seed_reuse)):
            try:
                check()
            except (TypeError, ValueError) as e:
                errors.append(str(e))

        master = request.master_image_path
        if not master:
            errors.append("master_image_path is required")
        elif not os.path.isfile(master):
            errors.append(f"Master image not found: {master}")
        elif os.path.splitext(master)[1].lower() not in SUPPORTED_IMAGE_FORMATS:
            errors.append(f"Unsupported master image format: {master}")
        elif not is_readable(master):
            errors.append(f"Master image is not readable: {master}")

        if mosaic_type is not None and mosaic_type.requires_seeds:
            seeds = request.seed_directory_path
            if not seeds:
                errors.append(f"seed_directory_path is required for {mosaic_type.value} mosaics")
            elif not os.path.isdir(seeds):
                errors.append(f"Seed directory not found: {seeds}")
            elif not is_readable(seeds):
                errors.append(f"Seed directory is not readable: {seeds}")
            else:
                try:
                    if not list_image_files(seeds):
                        errors.append(f"Seed directory contains no supported images: {seeds}")
                except OSError as e:
                    errors.append(f"Seed directory cannot be listed: {seeds} ({e})")

        if not request.output_path:
            errors.append("output_path is required")
        else:
            try:
                resolve_output_format(request.output_path, request.output_format)
            except ValueError as e:
                errors.append(str(e))

        if request.random_seed is not None and (
                isinstance(request.random_seed, bool) or not isinstance(request.random_seed, int)):
            errors.append(f"random_seed must be an integer, got {request.random_seed!r}")

        if errors:
            raise ValidationError(errors)
        return mosaic_type

    def submit(self, request: MosaicRequest) -> str:
        """
        Validate a request and schedule its build.

        Returns:
            str: The new operation id

        Raises:
            ValidationError: If the request is malformed; no operation is created
            MosaicError: If the tracker has been shut down
        """
        self.cleanup()
        mosaic_type = self.validate(request)
        if self._closed:
            raise MosaicError("Operation tracker has been shut down")

        record = _OperationRecord(
            generate_operation_id(),
            dataclasses.replace(request, mosaic_type=mosaic_type),
            self._clock(),
        )
        with self._lock:
            self._operations[record.id] = record

        try:
            record.future = self._executor.submit(self._run, record)
        except RuntimeError as e:
            with self._lock:
                self._operations.pop(record.id, None)
            raise MosaicError(f"Cannot schedule operation: {e}") from e

        logger.info(
            f"Queued {mosaic_type.value} operation {record.id} for {request.master_image_path}"
        )
        return record.id

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, record: _OperationRecord) -> None:
        with self._lock:
            record.status = OperationStatus.RUNNING
            record.started_at = self._clock()
            record.step = "starting"
        logger.info(f"Operation {record.id} started")

        sink = CallbackProgressSink(
            lambda operation_id, percent, step: self._on_progress(record, percent, step)
        )
        try:
            result = self.builder.build(
                record.request,
                progress_sink=sink,
                cancellation_token=record.token,
                operation_id=record.id,
                on_canvas=lambda canvas: self._attach_canvas(record, canvas),
            )
        except OperationCancelledError:
            logger.info(f"Operation {record.id} cancelled")
            self._finish(record, OperationStatus.CANCELLED)
        except MosaicError as e:
            logger.error(f"Operation {record.id} failed: {e}")
            self._finish(record, OperationStatus.FAILED, error=f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.exception(f"Operation {record.id} failed unexpectedly")
            self._finish(record, OperationStatus.FAILED, error=f"{InternalError.__name__}: {e}")
        else:
            self._finish(record, OperationStatus.COMPLETED, result=result)

    def _attach_canvas(self, record: _OperationRecord, canvas: np.ndarray) -> None:
        with self._lock:
            record.canvas = canvas

    def _on_progress(self, record: _OperationRecord, percent: int, step: str) -> None:
        with self._lock:
            if record.status is not OperationStatus.RUNNING or percent < record.progress:
                return
            record.progress = percent
            record.step = step

            reached = [m for m in self.preview_milestones if record.last_milestone < m <= percent]
            if reached:
                record.last_milestone = reached[-1]

        self.progress_sink.report(record.id, percent, step)
        if reached:
            self._refresh_preview(record)

    def _refresh_preview(self, record: _OperationRecord) -> Optional[bytes]:
        """Re-encode the live canvas as the cached preview."""
        with self._lock:
            canvas = record.canvas
        if canvas is None:
            return None

        try:
            data = self.image_io.create_thumbnail(canvas, max_size=self.preview_size)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not render preview for operation {record.id}: {e}")
            return None

        with self._lock:
            if record.status is OperationStatus.RUNNING:
                record.preview = data
        logger.debug(f"Refreshed preview of operation {record.id} at {record.progress}%")
        return data

    def _finish(self,
                record: _OperationRecord,
                status: OperationStatus,
                result: Optional[MosaicResult] = None,
                error: Optional[str] = None) -> None:
        with self._lock:
            record.status = status
            record.finished_at = self._clock()
            record.step = status.value
            record.result = result
            record.error_message = error
            record.canvas = None
            record.preview = None
            if status is OperationStatus.COMPLETED:
                record.progress = 100
            snapshot = record.snapshot()

        if status is OperationStatus.COMPLETED:
            logger.info(f"Operation {record.id} completed: {snapshot.result_path}")

        if self.recorder is not None:
            try:
                self.recorder.record(snapshot)
            except Exception as e:
                logger.error(f"Recording operation {record.id} failed: {e}")
        if isinstance(self.progress_sink, LoggingProgressSink):
            self.progress_sink.discard(record.id)
        record.done.set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _get(self, operation_id: str) -> _OperationRecord:
        record = self._operations.get(operation_id)
        if record is None:
            raise NotFoundError(f"Operation {operation_id} not found")
        return record

    def get_status(self, operation_id: str) -> MosaicOperation:
        """
        Snapshot of an operation.

        Raises:
            NotFoundError: If the id is unknown or was evicted
        """
        with self._lock:
            return self._get(operation_id).snapshot()

    def cancel(self, operation_id: str) -> bool:
        """
        Request cancellation of a queued or running operation.

        Returns:
            bool: True if the operation is still active (repeat calls also
            return True), False if it already reached a terminal state

        Raises:
            NotFoundError: If the id is unknown or was evicted
        """
        with self._lock:
            record = self._get(operation_id)
            if record.status.is_terminal:
                return False
            first_request = not record.token.is_cancellation_requested
            record.token.cancel()

        if first_request:
            logger.info(f"Cancellation requested for operation {operation_id}")
        return True

    def get_preview(self, operation_id: str) -> bytes:
        """
        JPEG thumbnail of an operation.

        While running, the partially drawn canvas is encoded (and cached);
        once completed, the written mosaic is.

        Raises:
            NotFoundError: If the id is unknown or was evicted
            PreviewNotAvailableError: If the operation is queued, failed or
                cancelled, or has not allocated its canvas yet
        """
        with self._lock:
            record = self._get(operation_id)
            status = record.status
            cached = record.preview
            has_canvas = record.canvas is not None
            result_path = record.result.output_path if record.result else None

        if status is OperationStatus.RUNNING:
            if not has_canvas:
                raise PreviewNotAvailableError(
                    f"Operation {operation_id} has not started drawing yet"
                )
            data = self._refresh_preview(record)
            if data is None:
                if cached is None:
                    raise PreviewNotAvailableError(
                        f"No preview available for operation {operation_id}"
                    )
                return cached
            return data

        if status is OperationStatus.COMPLETED:
            if cached is not None:
                return cached
            try:
                data = self.image_io.create_thumbnail(result_path, max_size=self.preview_size)
            except ResourceError as e:
                raise PreviewNotAvailableError(
                    f"Output of operation {operation_id} cannot be read: {e}"
                ) from e
            with self._lock:
                record.preview = data
            return data

        raise PreviewNotAvailableError(
            f"No preview available for operation {operation_id} ({status.value})"
        )

    def get_result(self, operation_id: str) -> str:
        """
        Output path of a completed operation.

        Raises:
            NotFoundError: If the id is unknown or was evicted
            NotReadyError: If the operation has not completed successfully
        """
        with self._lock:
            record = self._get(operation_id)
            if record.status is not OperationStatus.COMPLETED:
                raise NotReadyError(
                    f"Operation {operation_id} is {record.status.value}, no result available"
                )
            return record.result.output_path

    def wait(self, operation_id: str, timeout: Optional[float] = None) -> MosaicOperation:
        """Block until the operation is terminal or ``timeout`` elapses, then snapshot it."""
        with self._lock:
            record = self._get(operation_id)
        record.done.wait(timeout)
        with self._lock:
            return record.snapshot()

    def list_operations(self) -> List[MosaicOperation]:
        """Snapshots of all tracked operations in submission order."""
        with self._lock:
            return [record.snapshot() for record in self._operations.values()]

    @property
    def active_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._operations.values() if not r.status.is_terminal)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup(self, now: Optional[float] = None) -> int:
        """
        Evict finished operations past their retention or grace period.

        Queued and running operations are never evicted.

        Returns:
            int: Number of evicted operations
        """
        now = self._clock() if now is None else now
        with self._lock:
            expired = [
                operation_id for operation_id, record in self._operations.items()
                if record.status.is_terminal and (
                    now - record.created_at > self.retention_seconds
                    or now - record.finished_at > self.grace_seconds
                )
            ]
            for operation_id in expired:
                del self._operations[operation_id]

        if expired:
            logger.info(f"Evicted {len(expired)} finished operations")
        return len(expired)

    def remove(self, operation_id: str) -> bool:
        """
        Evict a finished operation now.

        Returns:
            bool: False if the operation is still queued or running

        Raises:
            NotFoundError: If the id is unknown or was evicted
        """
        with self._lock:
            record = self._get(operation_id)
            if not record.status.is_terminal:
                return False
            del self._operations[operation_id]
        return True

    def shutdown(self, cancel_running: bool = True, wait: bool = True) -> None:
        """
        Stop accepting operations.

        Args:
            cancel_running: Request cancellation of every active operation
            wait: Block until active operations have finished
        """
        with self._lock:
            self._closed = True
            active = [r for r in self._operations.values() if not r.status.is_terminal]
            if cancel_running:
                for record in active:
                    record.token.cancel()

        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        elif wait:
            for record in active:
                record.done.wait()
        logger.info("OperationTracker shut down")

    def __enter__(self) -> "OperationTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
