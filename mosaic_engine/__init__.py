"""
Mosaic Engine Package

A Python package for turning a master image into a mosaic of tiles, run as
cancellable background operations with progress reporting and previews.
Seed matching is vectorised through PyTorch; pixel work uses NumPy, Pillow
and OpenCV.

Main Components:
    - compute_tile_grid / average_color / color_distance: Grid and color primitives
    - SeedCatalog: Loads seed images and matches them by average color
    - ColorStrategy, HueStrategy, PhotoStrategy: Tile rendering strategies
    - MosaicBuilder: Builds one mosaic synchronously
    - OperationTracker: Runs builds in the background, tracked by id

Example:
    >>> from mosaic_engine import MosaicRequest, MosaicType, OperationTracker
    >>>
    >>> with OperationTracker() as tracker:
    ...     op_id = tracker.submit(MosaicRequest(
    ...         master_image_path='input.jpg',
    ...         seed_directory_path='seeds/',
    ...         tile_size=24,
    ...         mosaic_type=MosaicType.PHOTO,
    ...         output_path='out/mosaic.jpg',
    ...     ))
    ...     print(tracker.wait(op_id).status)
"""

from .tile_grid import Tile, compute_tile_grid, grid_shape
from .color_analyzer import MAX_COLOR_DISTANCE, average_color, color_distance
from .seed_catalog import SeedCatalog, SeedImage
from .strategies import ColorStrategy, HueStrategy, PhotoStrategy, get_strategy
from .mosaic_builder import MosaicBuilder
from .operation_tracker import OperationTracker
from .image_processor import ImageIO
from .progress import CallbackProgressSink, LoggingProgressSink, NullProgressSink
from .persistence import CsvResultRecorder
from .metrics import evaluate_mosaic_quality
from .models import (
    CancellationToken,
    MosaicOperation,
    MosaicRequest,
    MosaicResult,
    MosaicType,
    OperationStatus,
)
from .exceptions import (
    EmptyCatalogError,
    InternalError,
    InvalidArgumentError,
    MosaicError,
    NotFoundError,
    NotReadyError,
    PreviewNotAvailableError,
    ResourceError,
    ValidationError,
)
from .config import (
    DEFAULT_MAX_SEED_REUSE,
    DEFAULT_TILE_SIZE,
    HUE_OVERLAY_ALPHA,
    SUPPORTED_IMAGE_FORMATS,
    DEFAULT_DEVICE
)

__version__ = "1.0.0"

__all__ = [
    # Main classes
    "MosaicBuilder",
    "OperationTracker",
    "SeedCatalog",
    "SeedImage",
    "ImageIO",

    # Grid and color primitives
    "Tile",
    "compute_tile_grid",
    "grid_shape",
    "average_color",
    "color_distance",
    "MAX_COLOR_DISTANCE",

    # Strategies
    "ColorStrategy",
    "HueStrategy",
    "PhotoStrategy",
    "get_strategy",

    # Data model
    "CancellationToken",
    "MosaicOperation",
    "MosaicRequest",
    "MosaicResult",
    "MosaicType",
    "OperationStatus",

    # Collaborators
    "CallbackProgressSink",
    "LoggingProgressSink",
    "NullProgressSink",
    "CsvResultRecorder",
    "evaluate_mosaic_quality",

    # Errors
    "MosaicError",
    "InvalidArgumentError",
    "ValidationError",
    "ResourceError",
    "EmptyCatalogError",
    "InternalError",
    "NotFoundError",
    "NotReadyError",
    "PreviewNotAvailableError",

    # Configuration constants
    "DEFAULT_MAX_SEED_REUSE",
    "DEFAULT_TILE_SIZE",
    "HUE_OVERLAY_ALPHA",
    "SUPPORTED_IMAGE_FORMATS",
    "DEFAULT_DEVICE",
]
