"""
Tile grid module - partitions an image into tile rectangles.

The master image is split row-major into tiles of ``tile_size × tile_size``
pixels. The last column and the last row take whatever remains, so the tiles
cover the image exactly with no gaps and no overlap.

Classes:
    Tile: Rectangle of the master image mapped to one mosaic cell

Functions:
    grid_shape: Number of tile rows and columns for an image
    compute_tile_grid: Ordered list of tiles covering an image
"""

import dataclasses
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .exceptions import InvalidArgumentError


@dataclass(frozen=True)
class Tile:
    """
    Rectangle of the master image mapped to one output cell.

    Attributes:
        x: Left pixel column
        y: Top pixel row
        width: Width in pixels (equals the tile size except in the last column)
        height: Height in pixels (equals the tile size except in the last row)
        row: Grid row index
        col: Grid column index
        average_color: Mean RGB color of the tile's pixels; None until analysed
    """
    x: int
    y: int
    width: int
    height: int
    row: int = 0
    col: int = 0
    average_color: Optional[Tuple[int, int, int]] = None

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def slices(self) -> Tuple[slice, slice]:
        """NumPy (rows, cols) slices of this tile within an ``(H, W, C)`` array."""
        return slice(self.y, self.bottom), slice(self.x, self.right)

    def region(self, image: np.ndarray) -> np.ndarray:
        """Read-only view of this tile's pixels in ``image``."""
        view = image[self.slices()]
        view.flags.writeable = False
        return view

    def with_color(self, color: Tuple[int, int, int]) -> "Tile":
        """Copy of this tile carrying its analysed average color."""
        return dataclasses.replace(self, average_color=tuple(color))

    def intersects(self, other: "Tile") -> bool:
        return (self.x < other.right and other.x < self.right
                and self.y < other.bottom and other.y < self.bottom)


def _check_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidArgumentError(f"{name} must be an integer, got {type(value).__name__}")
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be greater than 0, got {value}")


def grid_shape(width: int, height: int, tile_size: int) -> Tuple[int, int]:
    """
    Compute the number of tile rows and columns for an image.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        tile_size: Requested tile edge length in pixels

    Returns:
        Tuple[int, int]: (rows, columns)

    Raises:
        InvalidArgumentError: If any argument is not a positive integer

    Example:
        >>> grid_shape(101, 101, 25)
        (5, 5)
    """
    _check_positive("width", width)
    _check_positive("height", height)
    _check_positive("tile_size", tile_size)
    return math.ceil(height / tile_size), math.ceil(width / tile_size)


def compute_tile_grid(width: int, height: int, tile_size: int) -> List[Tile]:
    """
    Partition a ``width × height`` image into row-major tiles.

    Interior tiles are exactly ``tile_size`` square. The last column is
    ``width - tile_size * (columns - 1)`` wide and the last row is
    ``height - tile_size * (rows - 1)`` high; both remainders lie in
    ``(0, tile_size]``. A tile size larger than the image collapses that
    axis to a single tile of the image's extent.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        tile_size: Requested tile edge length in pixels

    Returns:
        List[Tile]: ``ceil(W/S) * ceil(H/S)`` tiles in row-major order

    Raises:
        InvalidArgumentError: If any argument is not a positive integer

    Example:
        >>> tiles = compute_tile_grid(101, 101, 25)
        >>> len(tiles), tiles[-1].width, tiles[-1].height
        (25, 1, 1)
    """
    rows, cols = grid_shape(width, height, tile_size)

    last_width = width - tile_size * (cols - 1)
    last_height = height - tile_size * (rows - 1)

    tiles = []
    for row in range(rows):
        tile_h = last_height if row == rows - 1 else tile_size
        for col in range(cols):
            tile_w = last_width if col == cols - 1 else tile_size
            tiles.append(Tile(
                x=col * tile_size,
                y=row * tile_size,
                width=tile_w,
                height=tile_h,
                row=row,
                col=col,
            ))

    return tiles
