"""
Tile rendering strategies.

Each strategy turns one tile of the master image into the pixels painted at
that tile's position in the mosaic.

Classes:
    MosaicStrategy: Base class
    ColorStrategy: Solid fill with the tile's average color
    HueStrategy: Random seed tinted with the tile's average color
    PhotoStrategy: Seed whose average color is closest to the tile

Functions:
    get_strategy: Strategy instance for a mosaic type
"""

from typing import Dict, Optional, Sequence

import numpy as np

from .config import DEFAULT_MAX_SEED_REUSE, HUE_OVERLAY_ALPHA, validate_max_seed_reuse
from .exceptions import InvalidArgumentError
from .models import MosaicType
from .seed_catalog import SeedCatalog
from .tile_grid import Tile


class MosaicStrategy:
    """
    Base class for tile rendering strategies.

    Subclasses implement :meth:`render`, which must return a fresh
    ``(tile.height, tile.width, 3)`` uint8 array and must not modify the
    catalog apart from recording seed usage.
    """

    mosaic_type: MosaicType
    requires_seeds: bool = True

    @property
    def sequential(self) -> bool:
        """Whether tiles must be rendered one at a time, in grid order."""
        return False

    def render(self,
               tile: Tile,
               color: Sequence[int],
               catalog: Optional[SeedCatalog]) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ColorStrategy(MosaicStrategy):
    """Fill the tile with its average color. Seeds are never consulted."""

    mosaic_type = MosaicType.COLOR
    requires_seeds = False

    def render(self, tile, color, catalog=None):
        patch = np.empty((tile.height, tile.width, 3), dtype=np.uint8)
        patch[...] = np.asarray(color[:3], dtype=np.uint8)
        return patch


class HueStrategy(MosaicStrategy):
    """
    Paint the tile color semi-transparently over a randomly chosen seed.

    Each output channel is ``alpha/255 * color + (255-alpha)/255 * seed``,
    rounded to the nearest integer with halves rounding up.

    Attributes:
        alpha: Opacity of the tile color in range [0, 255]
    """

    mosaic_type = MosaicType.HUE

    def __init__(self, alpha: int = HUE_OVERLAY_ALPHA):
        if not 0 <= alpha <= 255:
            raise InvalidArgumentError(f"alpha must be in range [0, 255], got {alpha}")
        self.alpha = alpha

    def render(self, tile, color, catalog):
        seed = catalog.random_seed()
        catalog.record_use(seed)
        patch = catalog.patch_for(seed, tile.width, tile.height)
        return self.blend(patch, color)

    def blend(self, seed_pixels: np.ndarray, color: Sequence[int]) -> np.ndarray:
        """Composite ``color`` over ``seed_pixels`` with :attr:`alpha`."""
        overlay = np.asarray(color[:3], dtype=np.int32)
        weighted = self.alpha * overlay + (255 - self.alpha) * seed_pixels.astype(np.int32)
        # floor(weighted / 255 + 0.5) in integer arithmetic
        return ((2 * weighted + 255) // 510).astype(np.uint8)

    def __repr__(self) -> str:
        return f"HueStrategy(alpha={self.alpha})"


class PhotoStrategy(MosaicStrategy):
    """
    Draw the seed whose average color is closest to the tile's.

    With ``avoid_repetition`` the pick is spread over the catalog instead:
    seeds past ``max_seed_reuse`` uses or drawn very recently are skipped
    while other seeds remain, and earlier uses count against a seed. The
    result then depends on tile order, so such mosaics render sequentially.

    Attributes:
        avoid_repetition: Spread tiles over more seeds
        max_seed_reuse: Per-seed tile limit while avoiding repetition (0 = none)
    """

    mosaic_type = MosaicType.PHOTO

    def __init__(self,
                 avoid_repetition: bool = False,
                 max_seed_reuse: int = DEFAULT_MAX_SEED_REUSE):
        try:
            validate_max_seed_reuse(max_seed_reuse)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(str(e)) from e
        self.avoid_repetition = avoid_repetition
        self.max_seed_reuse = max_seed_reuse

    @property
    def sequential(self) -> bool:
        return self.avoid_repetition

    def render(self, tile, color, catalog):
        if self.avoid_repetition:
            seed = catalog.closest_unused_match(color, self.max_seed_reuse)
        else:
            seed = catalog.closest_match(color)
            catalog.record_use(seed)
        return catalog.patch_for(seed, tile.width, tile.height).copy()

    def __repr__(self) -> str:
        if not self.avoid_repetition:
            return "PhotoStrategy()"
        return f"PhotoStrategy(avoid_repetition=True, max_seed_reuse={self.max_seed_reuse})"


_STRATEGIES: Dict[MosaicType, type] = {
    MosaicType.COLOR: ColorStrategy,
    MosaicType.HUE: HueStrategy,
    MosaicType.PHOTO: PhotoStrategy,
}


def get_strategy(mosaic_type, **options) -> MosaicStrategy:
    """
    Create the strategy for a mosaic type.

    Args:
        mosaic_type: MosaicType member or its value ('color', 'hue', 'photo')
        **options: Keyword arguments for the strategy class

    Returns:
        MosaicStrategy: New strategy instance

    Raises:
        InvalidArgumentError: If the type is unknown

    Example:
        >>> get_strategy("photo")
        PhotoStrategy()
    """
    try:
        key = MosaicType.parse(mosaic_type)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from e
    return _STRATEGIES[key](**options)
