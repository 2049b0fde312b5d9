"""
Progress reporting collaborators.

A progress sink receives ``(operation_id, percent, step)`` updates. How they
are delivered (push channel, UI, console) is up to the sink.

Classes:
    ProgressSink: Protocol every sink implements
    NullProgressSink: Discards updates
    LoggingProgressSink: Writes updates to the package logger
    CallbackProgressSink: Forwards updates to a plain function
"""

import threading
from typing import Callable, Dict, Optional, Protocol

from .utils import logger


class ProgressSink(Protocol):
    """Receives progress updates for an operation."""

    def report(self, operation_id: Optional[str], percent: int, step: str) -> None:
        ...


class NullProgressSink:
    """Sink that ignores every update."""

    def report(self, operation_id: Optional[str], percent: int, step: str) -> None:
        pass


class LoggingProgressSink:
    """
    Sink that logs updates, at most one line per ``every`` percent.

    Step changes without a percentage change are logged at debug level.
    An operation is forgotten once it reports 100% or is discarded.
    """

    def __init__(self, every: int = 10):
        self.every = max(1, every)
        self._last_logged: Dict[Optional[str], int] = {}
        self._lock = threading.Lock()

    def report(self, operation_id: Optional[str], percent: int, step: str) -> None:
        with self._lock:
            last = self._last_logged.get(operation_id, -self.every)
            log = percent >= 100 or percent - last >= self.every
            if percent >= 100:
                self._last_logged.pop(operation_id, None)
            elif log:
                self._last_logged[operation_id] = percent

        if log:
            logger.info(f"[{operation_id or 'mosaic'}] {percent:3d}% {step}")
        else:
            logger.debug(f"[{operation_id or 'mosaic'}] {percent:3d}% {step}")

    def discard(self, operation_id: Optional[str]) -> None:
        """Forget an operation that stopped before reaching 100%."""
        with self._lock:
            self._last_logged.pop(operation_id, None)

    @property
    def tracked_operations(self) -> int:
        with self._lock:
            return len(self._last_logged)


class CallbackProgressSink:
    """Sink that forwards updates to ``callback(operation_id, percent, step)``."""

    def __init__(self, callback: Callable[[Optional[str], int, str], None]):
        self.callback = callback

    def report(self, operation_id: Optional[str], percent: int, step: str) -> None:
        self.callback(operation_id, percent, step)
