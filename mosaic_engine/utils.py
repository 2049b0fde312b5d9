"""
Utility functions for the mosaic engine package.

This module provides helper functions used across the package, including
logging setup, color naming, path validation, directory scanning and the
rounding rules shared by color analysis and progress reporting.

Functions:
    setup_logging: Configure logging for the package
    rgb_to_text: Convert RGB values to color name
    validate_file_path: Validate an image path and its extension
    list_image_files: Collect supported image files from a directory
    match_dimensions: Crop image to match target dimensions
    round_half_up: Round a number to the nearest integer, halves upward
    progress_percent: Completed share of a job as an integer percentage
    generate_operation_id: Unique id for a tracked operation
"""

import logging
import math
import os
import uuid
from pathlib import Path
from typing import List, Tuple, Union

import numpy as np

from .config import LOG_LEVEL, SUPPORTED_IMAGE_FORMATS
from .exceptions import ImageNotFoundError, UnsupportedFormatError


def setup_logging(level: str = LOG_LEVEL, name: str = "mosaic_engine") -> logging.Logger:
    """
    Configure and return a logger for the package.

    Args:
        level: Logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        name: Logger name

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging("INFO")
        >>> logger.info("Starting mosaic generation")
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


# Initialize package logger
logger = setup_logging()


def rgb_to_text(r: int, g: int, b: int) -> str:
    """
    Convert RGB values to a human-readable color name.

    Determines the dominant color based on the relative magnitudes
    of the red, green, and blue channels.

    Args:
        r: Red channel value (0-255)
        g: Green channel value (0-255)
        b: Blue channel value (0-255)

    Returns:
        str: Color name (e.g., 'Red', 'Green', 'Blue', 'Yellow', etc.)
             Returns 'Unknown' if no clear dominant color

    Example:
        >>> rgb_to_text(255, 0, 0)
        'Red'
        >>> rgb_to_text(128, 128, 128)
        'Unknown'
    """
    if r > g and r > b:
        return "Red"
    elif g > r and g > b:
        return "Green"
    elif b > r and b > g:
        return "Blue"
    elif r == g and r > b:
        return "Yellow"
    elif r == b and r > g:
        return "Magenta"
    elif g == b and g > r:
        return "Cyan"

    return "Unknown"


def validate_file_path(path: Union[str, Path],
                       must_exist: bool = True,
                       check_extension: bool = True) -> Path:
    """
    Validate and normalize an image file path.

    Args:
        path: File path to validate
        must_exist: If True, raises error if file doesn't exist
        check_extension: If True, validates file extension

    Returns:
        Path: Validated Path object

    Raises:
        ImageNotFoundError: If must_exist=True and file doesn't exist
        UnsupportedFormatError: If check_extension=True and extension not supported
    """
    path = Path(path)

    if must_exist and not path.is_file():
        raise ImageNotFoundError(f"File not found: {path}", path=str(path))

    if check_extension:
        ext = path.suffix.lower()
        if ext not in SUPPORTED_IMAGE_FORMATS:
            raise UnsupportedFormatError(
                f"Unsupported file format: {ext or '<none>'}. "
                f"Supported formats: {', '.join(SUPPORTED_IMAGE_FORMATS)}",
                path=str(path),
            )

    return path


def list_image_files(directory: Union[str, Path]) -> List[Path]:
    """
    Collect the supported image files of a directory, sorted by file name.

    Only the top level of the directory is scanned. The sort makes catalog
    order (and therefore closest-match tie-breaking) independent of the
    order the operating system lists entries in.

    Args:
        directory: Directory to scan

    Returns:
        List[Path]: Image files, empty if the directory does not exist
    """
    folder = Path(directory)
    if not folder.is_dir():
        return []
    return sorted(
        (f for f in folder.iterdir()
         if f.is_file() and f.suffix.lower() in SUPPORTED_IMAGE_FORMATS),
        key=lambda f: f.name,
    )


def is_readable(path: Union[str, Path]) -> bool:
    """Whether the current process may read ``path`` (and list it, for directories)."""
    mode = os.R_OK | os.X_OK if os.path.isdir(path) else os.R_OK
    return os.access(str(path), mode)


def match_dimensions(image: np.ndarray, target_shape: Tuple[int, int]) -> np.ndarray:
    """
    Crop image to match target dimensions by removing excess from right/bottom.

    Args:
        image: Input image array
        target_shape: Desired (height, width)

    Returns:
        np.ndarray: Cropped image

    Raises:
        ValueError: If image is smaller than target shape
    """
    h, w = image.shape[:2]
    target_h, target_w = target_shape

    if h < target_h or w < target_w:
        raise ValueError(
            f"Image size ({h}x{w}) is smaller than target shape ({target_h}x{target_w})"
        )

    if (h, w) == tuple(target_shape):
        return image

    return image[:target_h, :target_w]


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, with halves rounded up.

    Python's built-in ``round`` rounds halves to even, which would make
    e.g. a channel mean of 126.5 and 127.5 both land on an even value.

    Example:
        >>> round_half_up(2.5)
        3
    """
    return int(math.floor(value + 0.5))


def progress_percent(done: int, total: int) -> int:
    """
    Completed share of a job as an integer percentage in [0, 100].

    Example:
        >>> progress_percent(1, 3)
        33
        >>> progress_percent(0, 0)
        100
    """
    if total <= 0:
        return 100
    return max(0, min(100, round_half_up(100 * done / total)))


def generate_operation_id() -> str:
    """Random UUID4 string identifying a tracked operation."""
    return str(uuid.uuid4())
