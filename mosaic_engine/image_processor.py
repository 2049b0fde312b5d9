"""
Image processing module for the mosaic engine package.

This module provides the image I/O collaborator used by the builder and the
operation tracker: loading master and seed images, scaling seed images to
tile rectangles, writing finished mosaics and encoding preview thumbnails.

Classes:
    ImageIO: Image loading, saving, resizing and thumbnail encoding

Functions:
    downscale_image: Shrink an image so its longest side fits a limit
    fit_patch: Scale and center-crop an image to an exact size
"""

import io
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

from .config import (
    DECODE_RETRIES,
    DEFAULT_QUALITY,
    PREVIEW_MAX_SIZE,
    PREVIEW_QUALITY,
    resolve_output_format,
)
from .exceptions import ResourceError, UnsupportedFormatError
from .utils import validate_file_path, logger


def downscale_image(image: np.ndarray, max_side: int) -> np.ndarray:
    """
    Shrink an image so that its longest side is at most ``max_side``.

    Images that already fit are returned unchanged. Aspect ratio is kept.

    Example:
        >>> image = np.zeros((1024, 512, 3), dtype=np.uint8)
        >>> downscale_image(image, 256).shape
        (256, 128, 3)
    """
    h, w = image.shape[:2]
    longest = max(h, w)
    if longest <= max_side:
        return image

    scale = max_side / longest
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)


def fit_patch(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Scale and center-crop an image so it exactly fills ``width × height``.

    The largest centered region with the target aspect ratio is cut out of
    the source and then resized, so the seed is never distorted.

    Args:
        image: Source pixels (H, W, 3)
        width: Target width in pixels
        height: Target height in pixels

    Returns:
        np.ndarray: (height, width, 3) uint8 patch

    Example:
        >>> seed = np.zeros((300, 200, 3), dtype=np.uint8)
        >>> fit_patch(seed, 25, 1).shape
        (1, 25, 3)
    """
    src_h, src_w = image.shape[:2]

    # Crop box with the target aspect ratio
    scale = max(width / src_w, height / src_h)
    crop_w = min(src_w, max(1, int(round(width / scale))))
    crop_h = min(src_h, max(1, int(round(height / scale))))
    left = (src_w - crop_w) // 2
    top = (src_h - crop_h) // 2
    cropped = np.ascontiguousarray(image[top:top + crop_h, left:left + crop_w])

    if (crop_w, crop_h) == (width, height):
        return cropped.copy()

    shrinking = crop_w >= width and crop_h >= height
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    patch = cv2.resize(cropped, (width, height), interpolation=interpolation)
    return patch.reshape(height, width, -1)[..., :3]


class ImageIO:
    """
    Image I/O collaborator.

    The builder and tracker only talk to images through this class, so tests
    or alternative backends can swap it out.

    Attributes:
        decode_retries: Number of extra decode attempts after an ``OSError``
    """

    def __init__(self, decode_retries: int = DECODE_RETRIES):
        self.decode_retries = decode_retries

    def load_image(self, path: Union[str, Path]) -> np.ndarray:
        """
        Load an image from disk as RGB pixels.

        Args:
            path: Path to the image file

        Returns:
            np.ndarray: (H, W, 3) uint8 array

        Raises:
            ImageNotFoundError: If the file does not exist
            UnsupportedFormatError: If the extension is unsupported or decoding fails
        """
        path = validate_file_path(path, must_exist=True, check_extension=True)

        attempts = self.decode_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with Image.open(path) as pil_image:
                    image = np.array(pil_image.convert("RGB"))
                logger.debug(f"Loaded image from {path} with shape {image.shape}")
                return image
            except OSError as e:
                if attempt < attempts:
                    logger.debug(f"Decoding {path} failed ({e}), retrying")
                    continue
                raise UnsupportedFormatError(
                    f"Failed to load image from {path}: {e}", path=str(path)
                ) from e

    def load_seed_patch(self, path: Union[str, Path], target_size: Tuple[int, int]) -> np.ndarray:
        """
        Decode a seed image and fit it to ``target_size`` (width, height).
        """
        width, height = target_size
        return fit_patch(self.load_image(path), width, height)

    def save_image(self,
                   image: np.ndarray,
                   path: Union[str, Path],
                   output_format: Optional[str] = None,
                   quality: int = DEFAULT_QUALITY) -> Path:
        """
        Encode and write an image atomically.

        The image is written to a temporary file next to the destination and
        renamed into place, so a failed save never leaves a partial file.

        Args:
            image: (H, W, 3) uint8 pixels
            path: Destination path
            output_format: Pillow format name; derived from the extension if omitted
            quality: Encoder quality for JPEG and WebP

        Returns:
            Path: The written file

        Raises:
            ResourceError: If encoding or writing fails
        """
        path = Path(path)
        try:
            fmt = resolve_output_format(str(path), output_format)
        except ValueError as e:
            raise UnsupportedFormatError(str(e), path=str(path)) from e

        params = {}
        if fmt in ("JPEG", "WEBP"):
            params["quality"] = quality

        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.stem}.", suffix=".part", dir=str(path.parent)
            )
            with os.fdopen(fd, "wb") as handle:
                Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8)).save(
                    handle, format=fmt, **params
                )
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise ResourceError(f"Failed to save image to {path}: {e}", path=str(path)) from e
        finally:
            if tmp_name is not None:
                self.discard(tmp_name)

        logger.debug(f"Saved {fmt} image of shape {image.shape} to {path}")
        return path

    def create_thumbnail(self,
                         source: Union[np.ndarray, str, Path],
                         max_size: Tuple[int, int] = PREVIEW_MAX_SIZE,
                         quality: int = PREVIEW_QUALITY) -> bytes:
        """
        Encode a JPEG thumbnail that fits into ``max_size`` (width, height).

        Args:
            source: Pixels or a path to an image file

        Returns:
            bytes: JPEG data
        """
        if isinstance(source, np.ndarray):
            pil_image = Image.fromarray(np.ascontiguousarray(source, dtype=np.uint8))
        else:
            pil_image = Image.fromarray(self.load_image(source))

        pil_image.thumbnail(max_size)
        buffer = io.BytesIO()
        pil_image.convert("RGB").save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()

    @staticmethod
    def discard(path: Union[str, Path]) -> None:
        """Remove a file if it exists."""
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
