"""
Seed catalog module for the mosaic engine package.

This module provides the SeedCatalog class that scans a seed directory,
computes the average color of every seed image, and serves the seeds to the
rendering strategies: nearest-color lookup, uniform random picks, and
seed pixels scaled to a tile rectangle.

Classes:
    SeedImage: Dataclass for one catalogued seed
    SeedCatalog: In-memory collection of seeds for one operation
"""

import os
import random
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import torch
from torch import Tensor

from .color_analyzer import RGB, average_color
from .config import (
    METADATA_COLUMNS,
    RECENT_SEED_WINDOW,
    SEED_CACHE_MAX_SIDE,
    SEED_REUSE_PENALTY,
    get_device,
)
from .exceptions import EmptyCatalogError, OperationCancelledError, ResourceError
from .image_processor import ImageIO, downscale_image, fit_patch
from .models import CancellationToken
from .utils import list_image_files, rgb_to_text, logger


@dataclass(eq=False)
class SeedImage:
    """
    One catalogued seed image.

    Attributes:
        index: Position in catalog order
        path: Image file path
        average_color: Average RGB color of the full image
        dominant_color: Color name of the average color
        width: Original width in pixels
        height: Original height in pixels
        pixels: Downscaled RGB pixels; None when the color came from the metadata cache
    """
    index: int
    path: str
    average_color: RGB
    dominant_color: str
    width: int
    height: int
    pixels: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


class SeedCatalog:
    """
    Collection of seed images for one mosaic operation.

    This class handles:
    - Scanning a directory for seed images (sorted by file name)
    - Computing and caching each seed's average color
    - Nearest-color matching (vectorised with torch)
    - Nearest-color matching that avoids reusing seeds
    - Uniform random picks
    - Scaling seeds to tile rectangles, memoised per size
    - Counting how often each seed was used

    A catalog is never shared between operations. After construction it is
    only read, apart from the lock-protected caches and usage counters.

    Attributes:
        seeds: Seeds in catalog order
        device: Computation device for color matching
        directory: Directory the seeds were loaded from, if any

    Example:
        >>> catalog = SeedCatalog.from_directory('seeds/')
        >>> print(f"Loaded {len(catalog)} seeds")
        Loaded 120 seeds

        >>> seed = catalog.closest_match((255, 0, 0))
        >>> patch = catalog.patch_for(seed, 32, 32)
    """

    def __init__(self,
                 seeds: Sequence[SeedImage],
                 image_io: Optional[ImageIO] = None,
                 device: Optional[Union[str, torch.device]] = None,
                 rng: Optional[random.Random] = None,
                 directory: Optional[str] = None,
                 recent_window: int = RECENT_SEED_WINDOW):
        """
        Initialize a catalog from already analysed seeds.

        Args:
            seeds: Seeds in catalog order
            image_io: Image loader used for seeds without cached pixels
            device: Force specific device ('cuda', 'cpu') or None for auto
            rng: Random generator for random picks
            directory: Source directory, for messages
            recent_window: How many recently drawn seeds to remember
        """
        self.seeds: List[SeedImage] = list(seeds)
        self.image_io = image_io or ImageIO()
        self.device = torch.device(device) if device else get_device()
        self.directory = directory
        self._rng = rng or random.Random()

        self._rng_lock = threading.Lock()
        self._patch_lock = threading.Lock()
        self._usage_lock = threading.Lock()

        self._patch_cache: Dict[Tuple[int, int, int], np.ndarray] = {}
        self._usage: Counter = Counter()
        self._use_counts = torch.zeros(len(self.seeds), dtype=torch.float32, device=self.device)
        self._recent: Deque[int] = deque(maxlen=max(0, recent_window))

        # float32 keeps integer colors and their squared differences exact,
        # so equal distances compare equal and argmin picks the first seed
        if self.seeds:
            self._colors: Tensor = torch.tensor(
                [seed.average_color for seed in self.seeds],
                dtype=torch.float32,
                device=self.device,
            )
        else:
            self._colors = torch.empty((0, 3), dtype=torch.float32, device=self.device)

        logger.debug(f"Seed catalog ready with {len(self.seeds)} seeds on {self.device}")

    @classmethod
    def from_directory(cls,
                       directory: Union[str, Path],
                       image_io: Optional[ImageIO] = None,
                       device: Optional[Union[str, torch.device]] = None,
                       metadata_file: Optional[Union[str, Path]] = None,
                       rng: Optional[random.Random] = None,
                       cancellation_token: Optional[CancellationToken] = None) -> "SeedCatalog":
        """
        Build a catalog by scanning a seed directory.

        Seeds that cannot be decoded are skipped with a warning. When
        ``metadata_file`` is given, average colors of unchanged files are
        read from it instead of being recomputed, those seeds are decoded
        only when first drawn, and the file is rewritten afterwards.

        Args:
            directory: Directory containing seed images
            image_io: Image loader
            device: Computation device for matching
            metadata_file: CSV cache of seed colors, optional
            rng: Random generator for random picks
            cancellation_token: Checked between seed files

        Returns:
            SeedCatalog: The catalog, possibly empty

        Raises:
            OperationCancelledError: If cancellation is requested while scanning
        """
        image_io = image_io or ImageIO()
        files = list_image_files(directory)
        cached = cls._read_metadata(metadata_file) if metadata_file else {}

        logger.info(f"Loading {len(files)} seed images from {directory}")

        seeds: List[SeedImage] = []
        rows = []
        skipped = 0
        for path in files:
            if cancellation_token is not None and cancellation_token.is_cancellation_requested:
                raise OperationCancelledError("Cancelled while loading seed images")

            stat = path.stat()
            entry = cached.get(path.name)
            pixels = None

            if entry is not None and entry["size"] == stat.st_size and entry["mtime"] == stat.st_mtime_ns:
                color = entry["color"]
                width, height = entry["width"], entry["height"]
            else:
                try:
                    image = image_io.load_image(path)
                except ResourceError as e:
                    logger.warning(f"Failed to load seed {path.name}: {e}")
                    skipped += 1
                    continue
                color = average_color(image)
                height, width = image.shape[:2]
                pixels = downscale_image(image, SEED_CACHE_MAX_SIDE)

            seeds.append(SeedImage(
                index=len(seeds),
                path=str(path),
                average_color=color,
                dominant_color=rgb_to_text(*color),
                width=width,
                height=height,
                pixels=pixels,
            ))
            rows.append({
                METADATA_COLUMNS["filename"]: path.name,
                METADATA_COLUMNS["size"]: stat.st_size,
                METADATA_COLUMNS["mtime"]: stat.st_mtime_ns,
                METADATA_COLUMNS["width"]: width,
                METADATA_COLUMNS["height"]: height,
                METADATA_COLUMNS["avg_red"]: color[0],
                METADATA_COLUMNS["avg_green"]: color[1],
                METADATA_COLUMNS["avg_blue"]: color[2],
                METADATA_COLUMNS["dominant_color"]: rgb_to_text(*color),
            })

        if skipped:
            logger.warning(f"Skipped {skipped} unreadable seed images in {directory}")

        if metadata_file:
            cls._write_metadata(metadata_file, rows)

        return cls(seeds, image_io=image_io, device=device, rng=rng, directory=str(directory))

    @staticmethod
    def _read_metadata(metadata_file: Union[str, Path]) -> Dict[str, dict]:
        """Load cached seed colors keyed by file name; a missing or broken file yields {}."""
        if not os.path.exists(metadata_file):
            return {}

        try:
            frame = pd.read_csv(metadata_file)
        except (OSError, ValueError, pd.errors.ParserError) as e:
            logger.warning(f"Ignoring unreadable seed metadata {metadata_file}: {e}")
            return {}

        cached = {}
        for _, row in frame.iterrows():
            try:
                cached[str(row[METADATA_COLUMNS["filename"]])] = {
                    "size": int(row[METADATA_COLUMNS["size"]]),
                    "mtime": int(row[METADATA_COLUMNS["mtime"]]),
                    "width": int(row[METADATA_COLUMNS["width"]]),
                    "height": int(row[METADATA_COLUMNS["height"]]),
                    "color": (
                        int(row[METADATA_COLUMNS["avg_red"]]),
                        int(row[METADATA_COLUMNS["avg_green"]]),
                        int(row[METADATA_COLUMNS["avg_blue"]]),
                    ),
                }
            except (KeyError, TypeError, ValueError):
                continue
        logger.debug(f"Read {len(cached)} cached seed entries from {metadata_file}")
        return cached

    @staticmethod
    def _write_metadata(metadata_file: Union[str, Path], rows: List[dict]) -> None:
        try:
            pd.DataFrame(rows, columns=list(METADATA_COLUMNS.values())).to_csv(
                metadata_file, index=False
            )
        except OSError as e:
            logger.warning(f"Could not write seed metadata to {metadata_file}: {e}")

    def _require_seeds(self) -> None:
        if not self.seeds:
            raise EmptyCatalogError(
                f"No usable seed images in {self.directory or 'catalog'}",
                path=self.directory,
            )

    def _distances(self, target: Sequence[int]) -> Tensor:
        target_tensor = torch.tensor(
            [float(c) for c in target[:3]], dtype=torch.float32, device=self.device
        )
        return torch.norm(self._colors - target_tensor.unsqueeze(0), dim=1)

    def closest_match(self, target: Sequence[int]) -> SeedImage:
        """
        Find the seed whose average color is nearest to ``target``.

        Uses Euclidean distance in RGB space. When several seeds are
        equally close, the first one in catalog order wins.

        Args:
            target: RGB color values in range [0, 255]

        Returns:
            SeedImage: Best matching seed

        Raises:
            EmptyCatalogError: If the catalog has no seeds

        Example:
            >>> seed = catalog.closest_match((255, 0, 0))  # Red
            >>> print(f"Best match: {seed.name}")
        """
        self._require_seeds()
        return self.seeds[int(torch.argmin(self._distances(target)).item())]

    def closest_unused_match(self,
                             target: Sequence[int],
                             max_reuse: int,
                             reuse_penalty: float = SEED_REUSE_PENALTY) -> SeedImage:
        """
        Find a close seed while spreading tiles over the catalog.

        Seeds already drawn ``max_reuse`` times (when ``max_reuse`` > 0) and
        seeds in the recently drawn window are left out; if that leaves no
        candidate, every seed is considered again. Candidates are ranked by
        color distance plus ``reuse_penalty`` per earlier use, ties going to
        the first seed in catalog order. The chosen seed is recorded as used
        before the usage lock is released, so concurrent callers see each
        other's picks.

        Args:
            target: RGB color values in range [0, 255]
            max_reuse: Per-seed use limit, 0 for none
            reuse_penalty: Score added for every earlier use

        Returns:
            SeedImage: The chosen seed, already recorded as used

        Raises:
            EmptyCatalogError: If the catalog has no seeds
        """
        self._require_seeds()
        distances = self._distances(target)

        with self._usage_lock:
            allowed = torch.ones(len(self.seeds), dtype=torch.bool, device=self.device)
            if max_reuse > 0:
                allowed &= self._use_counts < max_reuse
            if self._recent:
                allowed[list(self._recent)] = False
            if not bool(allowed.any()):
                allowed[:] = True

            scores = distances + self._use_counts * reuse_penalty
            scores = scores.masked_fill(~allowed, float("inf"))
            seed = self.seeds[int(torch.argmin(scores).item())]
            self._mark_used(seed)
        return seed

    def random_seed(self) -> SeedImage:
        """
        Pick a seed uniformly at random.

        Raises:
            EmptyCatalogError: If the catalog has no seeds
        """
        self._require_seeds()
        with self._rng_lock:
            return self.seeds[self._rng.randrange(len(self.seeds))]

    def patch_for(self, seed: SeedImage, width: int, height: int) -> np.ndarray:
        """
        Seed pixels scaled and center-cropped to ``width × height``.

        Patches are memoised per (seed, size); since all interior tiles share
        one size, each seed is resized at most a few times per operation.
        Seeds catalogued from metadata have no cached pixels and are decoded
        from disk here. The returned array must not be modified.

        Raises:
            ResourceError: If an uncached seed can no longer be decoded
        """
        key = (seed.index, width, height)
        with self._patch_lock:
            patch = self._patch_cache.get(key)
        if patch is None:
            if seed.pixels is None:
                patch = self.image_io.load_seed_patch(seed.path, (width, height))
            else:
                patch = fit_patch(seed.pixels, width, height)
            patch.flags.writeable = False
            with self._patch_lock:
                patch = self._patch_cache.setdefault(key, patch)
        return patch

    def record_use(self, seed: SeedImage) -> None:
        with self._usage_lock:
            self._mark_used(seed)

    def _mark_used(self, seed: SeedImage) -> None:
        self._usage[seed.path] += 1
        self._use_counts[seed.index] += 1
        if seed.index not in self._recent:
            self._recent.append(seed.index)

    def usage_counts(self) -> Dict[str, int]:
        """How many tiles each seed was drawn into, keyed by path."""
        with self._usage_lock:
            return dict(self._usage)

    def __len__(self) -> int:
        """Return number of catalogued seeds."""
        return len(self.seeds)

    def __iter__(self) -> Iterator[SeedImage]:
        return iter(self.seeds)

    def __getitem__(self, idx: int) -> SeedImage:
        return self.seeds[idx]

    def get_statistics(self) -> Dict:
        """
        Get statistics about the seed collection.

        Returns:
            Dict: Seed count, dominant color histogram, usage and cache sizes
        """
        color_counts: Dict[str, int] = {}
        for seed in self.seeds:
            color_counts[seed.dominant_color] = color_counts.get(seed.dominant_color, 0) + 1

        usage = self.usage_counts()
        most_used = max(usage.items(), key=lambda kv: kv[1]) if usage else (None, 0)

        with self._patch_lock:
            cached_patches = len(self._patch_cache)

        return {
            'total_seeds': len(self.seeds),
            'device': str(self.device),
            'dominant_colors': color_counts,
            'unique_seeds_used': len(usage),
            'most_used_seed': most_used[0],
            'most_used_seed_count': most_used[1],
            'cached_patches': cached_patches,
        }
