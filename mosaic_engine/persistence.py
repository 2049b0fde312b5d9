"""
Operation history persistence.

The tracker hands every operation that reaches a terminal state to a result
recorder. The CSV recorder appends one row per operation with pandas.

Classes:
    ResultRecorder: Protocol every recorder implements
    CsvResultRecorder: Appends finished operations to a CSV file
"""

import os
import threading
from pathlib import Path
from typing import Protocol, Union

import pandas as pd

from .models import MosaicOperation
from .utils import logger

HISTORY_COLUMNS = [
    "id",
    "mosaic-type",
    "status",
    "progress",
    "created-at",
    "started-at",
    "finished-at",
    "result-path",
    "error-message",
    "tile-count",
    "elapsed-seconds",
]


class ResultRecorder(Protocol):
    """Receives a snapshot of every operation that finishes."""

    def record(self, operation: MosaicOperation) -> None:
        ...


class CsvResultRecorder:
    """
    Appends finished operations to a CSV file.

    The header is written when the file is created. Appends are serialised
    with a lock because operations finish on different threads.

    Example:
        >>> recorder = CsvResultRecorder("history.csv")
        >>> tracker = OperationTracker(recorder=recorder)
        >>> ...
        >>> recorder.load()[["id", "status"]]
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, operation: MosaicOperation) -> None:
        result = operation.result
        row = {
            "id": operation.id,
            "mosaic-type": operation.mosaic_type.value,
            "status": operation.status.value,
            "progress": operation.progress_percent,
            "created-at": operation.created_at,
            "started-at": operation.started_at,
            "finished-at": operation.finished_at,
            "result-path": operation.result_path,
            "error-message": operation.error_message,
            "tile-count": result.tile_count if result else None,
            "elapsed-seconds": result.elapsed_seconds if result else None,
        }
        frame = pd.DataFrame([row], columns=HISTORY_COLUMNS)

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not os.path.exists(self.path)
            frame.to_csv(self.path, mode="a", header=new_file, index=False)
        logger.debug(f"Recorded operation {operation.id} ({operation.status.value}) in {self.path}")

    def load(self) -> pd.DataFrame:
        """Read the recorded history; empty when nothing was recorded yet."""
        with self._lock:
            if not os.path.exists(self.path):
                return pd.DataFrame(columns=HISTORY_COLUMNS)
            return pd.read_csv(self.path)
