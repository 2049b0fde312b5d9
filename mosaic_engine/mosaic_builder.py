"""
Mosaic builder module - main mosaic construction logic.

This module provides the MosaicBuilder class that runs one mosaic job from
start to finish: load the master image, split it into tiles, load the seed
catalog, render every tile with the requested strategy and write the result.

Classes:
    MosaicBuilder: Builds a mosaic for a MosaicRequest
"""

import os
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Union

import numpy as np
import torch

from .color_analyzer import average_color
from .config import NUM_WORKERS, validate_quality, validate_tile_size
from .exceptions import (
    EmptyCatalogError,
    InternalError,
    InvalidArgumentError,
    MosaicError,
    OperationCancelledError,
)
from .image_processor import ImageIO
from .metrics import evaluate_mosaic_quality
from .models import CancellationToken, MosaicRequest, MosaicResult, MosaicType
from .progress import NullProgressSink, ProgressSink
from .seed_catalog import SeedCatalog
from .strategies import MosaicStrategy, get_strategy
from .tile_grid import Tile, compute_tile_grid, grid_shape
from .utils import progress_percent, logger

STEP_LOADING = "loading"
STEP_LOADING_SEEDS = "loading seeds"
STEP_SAVING = "saving"


class MosaicBuilder:
    """
    Builds mosaics from MosaicRequests.

    The MosaicBuilder coordinates the mosaic generation process:
    1. Loads the master image and divides it into a grid of tiles
    2. Loads the seed catalog (hue and photo mosaics only)
    3. Computes each tile's average color
    4. Renders each tile with the requested strategy into a canvas
    5. Writes the canvas to the output path

    Tiles are rendered in parallel by a thread pool and report progress
    after each tile. The builder keeps no per-job state, so one instance may
    serve several jobs at once.

    Attributes:
        image_io: Image loading and saving collaborator
        max_workers: Threads used to render tiles
        device: Computation device for seed matching
        metadata_file: Seed metadata CSV; a bare file name is placed in the seed directory

    Example:
        >>> from mosaic_engine import MosaicBuilder, MosaicRequest, MosaicType
        >>>
        >>> builder = MosaicBuilder()
        >>> request = MosaicRequest(
        ...     master_image_path="input.jpg",
        ...     seed_directory_path="seeds/",
        ...     tile_size=24,
        ...     mosaic_type=MosaicType.PHOTO,
        ...     output_path="out/mosaic.jpg",
        ... )
        >>> result = builder.build(request)
        >>> print(f"{result.tile_count} tiles in {result.elapsed_seconds:.2f}s")
    """

    def __init__(self,
                 image_io: Optional[ImageIO] = None,
                 max_workers: int = NUM_WORKERS,
                 device: Optional[Union[str, torch.device]] = None,
                 metadata_file: Optional[str] = None):
        if max_workers < 1:
            raise InvalidArgumentError(f"max_workers must be at least 1, got {max_workers}")

        self.image_io = image_io or ImageIO()
        self.max_workers = max_workers
        self.device = device
        self.metadata_file = metadata_file

    def build(self,
              request: MosaicRequest,
              progress_sink: Optional[ProgressSink] = None,
              cancellation_token: Optional[CancellationToken] = None,
              operation_id: Optional[str] = None,
              on_canvas: Optional[Callable[[np.ndarray], None]] = None,
              rng: Optional[random.Random] = None) -> MosaicResult:
        """
        Build the mosaic described by ``request``.

        Args:
            request: The job to run
            progress_sink: Receives ``(operation_id, percent, step)`` updates
            cancellation_token: Polled before every tile
            operation_id: Passed through to the progress sink
            on_canvas: Called once with the output canvas before tiles are drawn
            rng: Random generator for hue mosaics; overrides ``request.random_seed``

        Returns:
            MosaicResult: Metadata of the written mosaic

        Raises:
            InvalidArgumentError: If the request parameters are out of range
            ResourceError: If an image cannot be read or the output cannot be written
            EmptyCatalogError: If a seed-based mosaic finds no usable seeds
            OperationCancelledError: If cancellation was requested; nothing is written
            InternalError: If rendering a tile fails unexpectedly
        """
        sink = progress_sink or NullProgressSink()
        token = cancellation_token or CancellationToken()
        strategy = self._create_strategy(request)
        try:
            validate_tile_size(request.tile_size)
            validate_quality(request.quality)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(str(e)) from e

        start_time = time.time()
        label = operation_id or os.path.basename(request.output_path)
        logger.info(
            f"[{label}] Building {strategy.mosaic_type.value} mosaic of "
            f"{request.master_image_path} with {request.tile_size}px tiles"
        )

        sink.report(operation_id, 0, STEP_LOADING)
        self._check_cancelled(token)
        master = self.image_io.load_image(request.master_image_path)
        height, width = master.shape[:2]
        tiles = compute_tile_grid(width, height, request.tile_size)
        rows, columns = grid_shape(width, height, request.tile_size)
        logger.debug(f"[{label}] {width}x{height} master split into {rows}x{columns} tiles")

        catalog = None
        if strategy.requires_seeds:
            sink.report(operation_id, 0, STEP_LOADING_SEEDS)
            if rng is None and request.random_seed is not None:
                rng = random.Random(request.random_seed)
            catalog = self._load_catalog(request, token, rng)

        canvas = np.zeros((height, width, 3), dtype=np.uint8)
        if on_canvas is not None:
            on_canvas(canvas)

        # Seeded hue picks and repetition-avoiding photo picks depend on tile order
        workers = 1 if rng is not None or strategy.sequential else self.max_workers
        self._render_tiles(master, canvas, tiles, strategy, catalog,
                           sink, token, operation_id, workers)

        self._check_cancelled(token)
        sink.report(operation_id, 100, STEP_SAVING)
        output_path = self.image_io.save_image(
            canvas, request.output_path, request.output_format, request.quality
        )

        result = MosaicResult(
            output_path=str(output_path),
            mosaic_type=strategy.mosaic_type,
            tile_count=len(tiles),
            rows=rows,
            columns=columns,
            elapsed_seconds=0.0,
        )
        if catalog is not None:
            stats = catalog.get_statistics()
            result.seed_count = stats['total_seeds']
            result.unique_seeds_used = stats['unique_seeds_used']
            result.most_used_seed = stats['most_used_seed']
            result.most_used_seed_count = stats['most_used_seed_count']

        if request.evaluate_quality:
            result.quality = evaluate_mosaic_quality(master, canvas)

        result.elapsed_seconds = time.time() - start_time
        logger.info(
            f"[{label}] ✅ Mosaic with {len(tiles)} tiles written to {output_path} "
            f"in {result.elapsed_seconds:.3f}s"
        )
        return result

    @staticmethod
    def _create_strategy(request: MosaicRequest) -> MosaicStrategy:
        try:
            mosaic_type = MosaicType.parse(request.mosaic_type)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        if mosaic_type is MosaicType.PHOTO and request.avoid_repetition:
            return get_strategy(mosaic_type, avoid_repetition=True,
                                max_seed_reuse=request.max_seed_reuse)
        return get_strategy(mosaic_type)

    def _load_catalog(self,
                      request: MosaicRequest,
                      token: CancellationToken,
                      rng: Optional[random.Random]) -> SeedCatalog:
        if not request.seed_directory_path:
            raise InvalidArgumentError(
                "Hue and photo mosaics need a seed directory"
            )

        metadata_file = self.metadata_file
        if metadata_file and not os.path.dirname(metadata_file):
            metadata_file = os.path.join(request.seed_directory_path, metadata_file)

        catalog = SeedCatalog.from_directory(
            request.seed_directory_path,
            image_io=self.image_io,
            device=self.device,
            metadata_file=metadata_file,
            rng=rng,
            cancellation_token=token,
        )
        if len(catalog) == 0:
            raise EmptyCatalogError(
                f"No usable seed images in {request.seed_directory_path}",
                path=request.seed_directory_path,
            )
        return catalog

    def _render_tiles(self,
                      master: np.ndarray,
                      canvas: np.ndarray,
                      tiles: List[Tile],
                      strategy: MosaicStrategy,
                      catalog: Optional[SeedCatalog],
                      sink: ProgressSink,
                      token: CancellationToken,
                      operation_id: Optional[str],
                      workers: int) -> None:
        """
        Render every tile into ``canvas``.

        Tiles own disjoint canvas regions, so workers write without locking;
        only the completion counter and progress reports are serialised.
        Returns early, leaving later tiles blank, once cancellation is requested.
        """
        total = len(tiles)
        done = 0
        lock = threading.Lock()
        abort = threading.Event()

        def render_tile(tile: Tile) -> None:
            nonlocal done
            if token.is_cancellation_requested or abort.is_set():
                return

            tile = tile.with_color(average_color(tile.region(master)))
            try:
                patch = strategy.render(tile, tile.average_color, catalog)
            except MosaicError:
                raise
            except Exception as e:
                raise InternalError(
                    f"Rendering tile ({tile.row}, {tile.col}) failed: {e}"
                ) from e
            canvas[tile.slices()] = patch

            with lock:
                done += 1
                sink.report(operation_id, progress_percent(done, total),
                            f"analyzing tile {done}/{total}")

        if workers <= 1:
            for tile in tiles:
                render_tile(tile)
            return

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mosaic-tile") as pool:
            futures = [pool.submit(render_tile, tile) for tile in tiles]
            try:
                for future in futures:
                    future.result()
            except BaseException:
                abort.set()
                for future in futures:
                    future.cancel()
                raise

    @staticmethod
    def _check_cancelled(token: CancellationToken) -> None:
        if token.is_cancellation_requested:
            raise OperationCancelledError("Mosaic build cancelled")
