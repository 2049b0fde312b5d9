"""
Color analysis module - average colors and RGB distances.

Functions:
    average_color: Per-channel mean color of a pixel region
    color_distance: Euclidean distance between two RGB colors
"""

import math
from typing import Sequence, Tuple

import numpy as np

from .exceptions import InvalidArgumentError
from .utils import round_half_up

RGB = Tuple[int, int, int]

MAX_COLOR_DISTANCE: float = math.sqrt(3 * 255 * 255)
"""Distance between black and white (sqrt(3) * 255), the largest possible RGB distance"""


def average_color(region: np.ndarray) -> RGB:
    """
    Compute the average color of a pixel region.

    Each channel is averaged independently over every pixel and rounded to
    the nearest integer (halves round up). The region is only read; no
    reference to it is kept.

    Args:
        region: Pixels as (H, W, 3) or (H, W, 4) array; alpha is ignored.
            Grayscale (H, W) regions are treated as gray RGB.

    Returns:
        RGB: (red, green, blue) in range [0, 255]

    Raises:
        InvalidArgumentError: If the region is empty or has an unexpected shape

    Example:
        >>> region = np.zeros((4, 4, 3), dtype=np.uint8)
        >>> region[..., 0] = 255
        >>> average_color(region)
        (255, 0, 0)
    """
    if not isinstance(region, np.ndarray):
        raise InvalidArgumentError(
            f"Region must be a NumPy array, got {type(region).__name__}"
        )

    if region.ndim == 2:
        means = [float(region.mean(dtype=np.float64))] * 3 if region.size else []
    elif region.ndim == 3 and region.shape[2] >= 3:
        if region.shape[0] == 0 or region.shape[1] == 0:
            means = []
        else:
            means = region[..., :3].mean(axis=(0, 1), dtype=np.float64).tolist()
    else:
        raise InvalidArgumentError(
            f"Region must have shape (H, W), (H, W, 3) or (H, W, 4), got {region.shape}"
        )

    if not means:
        raise InvalidArgumentError("Cannot compute the average color of an empty region")

    r, g, b = (min(255, max(0, round_half_up(m))) for m in means)
    return r, g, b


def color_distance(a: Sequence[int], b: Sequence[int]) -> float:
    """
    Euclidean distance between two colors in RGB space.

    Symmetric, zero only for equal colors, and at most
    :data:`MAX_COLOR_DISTANCE`.

    Example:
        >>> color_distance((0, 0, 0), (255, 255, 255)) == MAX_COLOR_DISTANCE
        True
    """
    dr = int(a[0]) - int(b[0])
    dg = int(a[1]) - int(b[1])
    db = int(a[2]) - int(b[2])
    return math.sqrt(dr * dr + dg * dg + db * db)
