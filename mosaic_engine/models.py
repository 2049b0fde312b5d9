"""
Data model for mosaic requests, results and tracked operations.

Classes:
    MosaicType: The three tile rendering strategies
    OperationStatus: Lifecycle states of a tracked operation
    MosaicRequest: Immutable description of one mosaic job
    MosaicResult: Metadata of a finished mosaic
    MosaicOperation: Read-only snapshot of a tracked operation
    CancellationToken: Cooperative cancellation flag shared with a build
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .config import (
    DEFAULT_MAX_SEED_REUSE,
    DEFAULT_QUALITY,
    MOSAIC_TYPE_COLOR,
    MOSAIC_TYPE_HUE,
    MOSAIC_TYPE_PHOTO,
)


class MosaicType(str, Enum):
    """How each tile of the mosaic is rendered."""

    COLOR = MOSAIC_TYPE_COLOR  # Solid fill with the tile's average color
    HUE = MOSAIC_TYPE_HUE  # Random seed tinted with the tile's average color
    PHOTO = MOSAIC_TYPE_PHOTO  # Seed whose average color is closest to the tile

    @property
    def requires_seeds(self) -> bool:
        return self is not MosaicType.COLOR

    @classmethod
    def parse(cls, value) -> "MosaicType":
        """Accept a member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValueError(
            f"Unknown mosaic type '{value}'. Valid types: {[m.value for m in cls]}"
        )


class OperationStatus(str, Enum):
    """Status of a tracked mosaic operation."""

    QUEUED = "queued"  # Accepted, waiting for a worker
    RUNNING = "running"  # Build in progress
    COMPLETED = "completed"  # Output written
    FAILED = "failed"  # Aborted by an error
    CANCELLED = "cancelled"  # Stopped on request

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.FAILED, OperationStatus.CANCELLED}
)


@dataclass(frozen=True)
class MosaicRequest:
    """
    Immutable description of one mosaic job.

    Attributes:
        master_image_path: Image the mosaic reproduces
        seed_directory_path: Directory with seed images (unused for COLOR)
        tile_size: Tile edge length in pixels
        mosaic_type: Rendering strategy
        output_path: Where the finished mosaic is written
        quality: Encoder quality for JPEG/WebP output
        output_format: Pillow format name; derived from output_path when None
        random_seed: Seed for the random pick of hue mosaics, None = non-deterministic
        evaluate_quality: Compare the mosaic with the master image when done
        avoid_repetition: Photo mosaics spread tiles over more seeds instead of
            always drawing the closest one
        max_seed_reuse: Per-seed tile limit while avoiding repetition (0 = no limit)
    """
    master_image_path: str
    seed_directory_path: Optional[str]
    tile_size: int
    mosaic_type: MosaicType
    output_path: str
    quality: int = DEFAULT_QUALITY
    output_format: Optional[str] = None
    random_seed: Optional[int] = None
    evaluate_quality: bool = False
    avoid_repetition: bool = False
    max_seed_reuse: int = DEFAULT_MAX_SEED_REUSE


@dataclass
class MosaicResult:
    """Metadata of a finished mosaic."""
    output_path: str
    mosaic_type: MosaicType
    tile_count: int
    rows: int
    columns: int
    elapsed_seconds: float
    seed_count: int = 0
    unique_seeds_used: int = 0
    most_used_seed: Optional[str] = None
    most_used_seed_count: int = 0
    quality: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class MosaicOperation:
    """
    Read-only snapshot of a tracked operation.

    ``result_path`` and ``result`` are only set on COMPLETED,
    ``error_message`` only on FAILED.
    """
    id: str
    mosaic_type: MosaicType
    status: OperationStatus
    progress_percent: int
    current_step: str
    cancellation_requested: bool
    created_at: float
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    result_path: Optional[str] = None
    error_message: Optional[str] = None
    result: Optional[MosaicResult] = None


class CancellationToken:
    """
    Cooperative cancellation flag.

    The tracker calls :meth:`cancel`; the builder polls
    :attr:`is_cancellation_requested` between tiles.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancellation is requested or ``timeout`` elapses."""
        return self._event.wait(timeout)
