"""
Configuration constants for the mosaic engine package.

This module contains all configurable parameters and constants used throughout
mosaic generation and operation tracking, including tile size bounds, supported
formats, worker pool sizes, retention windows and preview settings.

Constants:
    DEFAULT_TILE_SIZE: Default tile edge length in pixels
    MIN_TILE_SIZE / MAX_TILE_SIZE: Accepted tile edge range
    SUPPORTED_IMAGE_FORMATS: List of supported image file extensions
    HUE_OVERLAY_ALPHA: Alpha of the color overlay painted by the hue strategy
    DEFAULT_MAX_SEED_REUSE: Per-seed tile limit when photo mosaics avoid repetition
    RECENT_SEED_WINDOW: Number of recently drawn seeds skipped when avoiding repetition
    SEED_REUSE_PENALTY: Score added per earlier use of a seed when avoiding repetition
    DEFAULT_DEVICE: Default computation device for seed matching

Operation Settings:
    MAX_CONCURRENT_OPERATIONS: Size of the default operation worker pool
    OPERATION_RETENTION_SECONDS: Maximum lifetime of a finished operation
    TERMINAL_GRACE_SECONDS: Time a finished operation stays queryable
    PREVIEW_MAX_SIZE: Bounding box of generated preview thumbnails
    PREVIEW_MILESTONES: Progress percentages at which previews are refreshed

Performance Settings:
    NUM_WORKERS: Number of tile rendering threads per operation
    SEED_CACHE_MAX_SIDE: Longest side of cached seed pixels
"""

import os
from typing import Dict, Optional, Tuple
import torch

# ========== Tile Settings ==========
DEFAULT_TILE_SIZE: int = 16
"""Default tile edge length in pixels"""

MIN_TILE_SIZE: int = 1
"""Minimum allowed tile edge length"""

MAX_TILE_SIZE: int = 1000
"""Maximum allowed tile edge length"""

# ========== File and Directory Settings ==========
SUPPORTED_IMAGE_FORMATS: Tuple[str, ...] = (
    ".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".webp"
)
"""Supported image file extensions (seed scan and master image)"""

OUTPUT_FORMATS: Dict[str, str] = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".bmp": "BMP",
    ".tiff": "TIFF",
    ".tif": "TIFF",
    ".webp": "WEBP",
}
"""Mapping of output file extensions to Pillow encoder names"""

DEFAULT_QUALITY: int = 85
"""Default encoder quality for lossy output formats"""

MIN_QUALITY: int = 1
MAX_QUALITY: int = 100

DEFAULT_METADATA_FILE: str = "seeds_metadata.csv"
"""Default CSV file name for cached seed metadata"""

# ========== Strategy Settings ==========
MOSAIC_TYPE_COLOR: str = "color"
MOSAIC_TYPE_HUE: str = "hue"
MOSAIC_TYPE_PHOTO: str = "photo"
VALID_MOSAIC_TYPES: Tuple[str, ...] = (MOSAIC_TYPE_COLOR, MOSAIC_TYPE_HUE, MOSAIC_TYPE_PHOTO)
"""Accepted values for the mosaic type of a request"""

HUE_OVERLAY_ALPHA: int = 210
"""Alpha (0-255) of the tile color painted over a random seed in hue mosaics"""

SEED_CACHE_MAX_SIDE: int = 256
"""Seeds are cached downscaled so that their longest side is at most this value"""

DEFAULT_MAX_SEED_REUSE: int = 3
"""Photo mosaics that avoid repetition draw each seed into at most this many tiles (0 = no limit)"""

RECENT_SEED_WINDOW: int = 20
"""Photo mosaics that avoid repetition skip the seeds drawn most recently, up to this many"""

SEED_REUSE_PENALTY: float = 10.0
"""Added to a seed's color distance for every tile it already fills when avoiding repetition"""

# ========== Device and Performance Settings ==========
DEFAULT_DEVICE: str = "auto"
"""
Default computation device for seed matching:
    - 'auto': Automatically detect CUDA GPU or fallback to CPU
    - 'cuda': Force GPU computation
    - 'cpu': Force CPU computation
"""

NUM_WORKERS: int = 4
"""Number of tile rendering threads inside one operation"""

MAX_CONCURRENT_OPERATIONS: int = 2
"""Number of operations the default tracker pool runs at the same time"""

DECODE_RETRIES: int = 1
"""How many times a failed image decode is retried before giving up"""

# ========== Operation Lifecycle Settings ==========
OPERATION_RETENTION_SECONDS: float = 24 * 60 * 60
"""Finished operations older than this (since creation) are evicted"""

TERMINAL_GRACE_SECONDS: float = 60 * 60
"""Finished operations are evicted this long after reaching a terminal state"""

PREVIEW_MAX_SIZE: Tuple[int, int] = (400, 300)
"""Preview thumbnail bounding box (width, height)"""

PREVIEW_MILESTONES: Tuple[int, ...] = (25, 50, 75)
"""Progress percentages at which a running operation refreshes its preview"""

PREVIEW_QUALITY: int = 75
"""JPEG quality of preview thumbnails"""

# ========== Logging Settings ==========
LOG_LEVEL: str = "INFO"
"""Logging level: 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'"""

# ========== Metadata Column Names ==========
METADATA_COLUMNS = {
    "filename": "filename",
    "size": "file-size",
    "mtime": "modified-ns",
    "width": "width",
    "height": "height",
    "avg_red": "average-red",
    "avg_green": "average-green",
    "avg_blue": "average-blue",
    "dominant_color": "dominant-color",
}
"""Column names in the seed metadata CSV file"""


def get_device() -> torch.device:
    """
    Get the appropriate computation device based on configuration.

    Returns:
        torch.device: CUDA device if available and enabled, otherwise CPU

    Example:
        >>> device = get_device()
        >>> print(f"Using device: {device}")
        Using device: cpu
    """
    if DEFAULT_DEVICE == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    elif DEFAULT_DEVICE == "cuda" and not torch.cuda.is_available():
        import warnings
        warnings.warn("CUDA requested but not available. Falling back to CPU.")
        return torch.device("cpu")
    else:
        return torch.device(DEFAULT_DEVICE)


def validate_tile_size(tile_size: int) -> None:
    """
    Validate that a tile edge length is within acceptable bounds.

    Args:
        tile_size: Tile edge length in pixels

    Raises:
        TypeError: If tile_size is not an integer
        ValueError: If tile_size is outside [MIN_TILE_SIZE, MAX_TILE_SIZE]

    Example:
        >>> validate_tile_size(32)  # Valid
        >>> validate_tile_size(0)  # Raises ValueError
    """
    if isinstance(tile_size, bool) or not isinstance(tile_size, int):
        raise TypeError(f"Tile size must be an integer, got {type(tile_size).__name__}")

    if tile_size < MIN_TILE_SIZE:
        raise ValueError(
            f"Tile size {tile_size} is too small. "
            f"Minimum allowed: {MIN_TILE_SIZE}"
        )

    if tile_size > MAX_TILE_SIZE:
        raise ValueError(
            f"Tile size {tile_size} is too large. "
            f"Maximum allowed: {MAX_TILE_SIZE}"
        )


def validate_quality(quality: int) -> None:
    """
    Validate that an encoder quality is in range [1, 100].

    Raises:
        TypeError: If quality is not an integer
        ValueError: If quality is outside the range
    """
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise TypeError(f"Quality must be an integer, got {type(quality).__name__}")

    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise ValueError(
            f"Quality must be in range [{MIN_QUALITY}, {MAX_QUALITY}], got {quality}"
        )


def validate_max_seed_reuse(max_seed_reuse: int) -> None:
    """
    Validate a per-seed reuse limit (0 disables the limit).

    Raises:
        TypeError: If the limit is not an integer
        ValueError: If the limit is negative
    """
    if isinstance(max_seed_reuse, bool) or not isinstance(max_seed_reuse, int):
        raise TypeError(f"max_seed_reuse must be an integer, got {type(max_seed_reuse).__name__}")

    if max_seed_reuse < 0:
        raise ValueError(f"max_seed_reuse must be 0 or greater, got {max_seed_reuse}")


def resolve_output_format(output_path: str, output_format: Optional[str] = None) -> str:
    """
    Determine the Pillow encoder name for an output file.

    Args:
        output_path: Destination path; its extension is used when no format is given
        output_format: Explicit format name ('JPEG', 'png', ...), optional

    Returns:
        str: Upper-case Pillow format name

    Raises:
        ValueError: If the format cannot be determined or is unsupported

    Example:
        >>> resolve_output_format("out/mosaic.jpg")
        'JPEG'
    """
    if output_format:
        fmt = output_format.upper()
        if fmt == "JPG":
            fmt = "JPEG"
        if fmt not in set(OUTPUT_FORMATS.values()):
            raise ValueError(
                f"Unsupported output format: {output_format}. "
                f"Supported formats: {', '.join(sorted(set(OUTPUT_FORMATS.values())))}"
            )
        return fmt

    ext = os.path.splitext(str(output_path))[1].lower()
    if ext not in OUTPUT_FORMATS:
        raise ValueError(
            f"Cannot determine output format from '{output_path}'. "
            f"Supported extensions: {', '.join(OUTPUT_FORMATS)}"
        )
    return OUTPUT_FORMATS[ext]


def validate_mosaic_type(mosaic_type: str) -> None:
    """
    Validate a mosaic type name.

    Raises:
        ValueError: If mosaic_type is not one of VALID_MOSAIC_TYPES
    """
    value = getattr(mosaic_type, "value", mosaic_type)
    if not isinstance(value, str) or value.strip().lower() not in VALID_MOSAIC_TYPES:
        raise ValueError(
            f"mosaic_type must be one of {VALID_MOSAIC_TYPES}, got '{mosaic_type}'"
        )
