"""
Similarity metrics for mosaic quality evaluation.

A finished mosaic has the same size as its master image, so every metric
compares the two pixel for pixel.

Functions:
    compute_mse: Mean Squared Error
    compute_psnr: Peak Signal-to-Noise Ratio
    compute_ssim: Structural Similarity Index
    compute_ms_ssim: Multi-Scale Structural Similarity Index
    evaluate_mosaic_quality: Every metric that applies to the image size
"""

from typing import Dict, Tuple

import numpy as np
import torch
from pytorch_msssim import ms_ssim, ssim
from torch import Tensor

from .exceptions import InvalidArgumentError
from .utils import match_dimensions, logger

SSIM_MIN_SIDE: int = 11
"""Smallest image side the 11x11 SSIM window fits into"""

MS_SSIM_MIN_SIDE: int = 161
"""Smallest image side MS-SSIM accepts with its default five scales"""


def _aligned(image1: np.ndarray, image2: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Crop both images to their common size."""
    if image1.shape != image2.shape:
        target_shape = (
            min(image1.shape[0], image2.shape[0]),
            min(image1.shape[1], image2.shape[1])
        )
        image1 = match_dimensions(image1, target_shape)
        image2 = match_dimensions(image2, target_shape)
    return image1, image2


def _to_batch(image: np.ndarray) -> Tensor:
    return torch.from_numpy(np.ascontiguousarray(image)).permute(2, 0, 1).unsqueeze(0).float()


def compute_mse(image1: np.ndarray, image2: np.ndarray) -> float:
    """
    Compute Mean Squared Error between two images.

    Lower values indicate higher similarity (0 = identical).

    Example:
        >>> img = np.random.randint(0, 256, (64, 64, 3), dtype=np.uint8)
        >>> compute_mse(img, img.copy())
        0.0
    """
    image1, image2 = _aligned(image1, image2)
    mse = np.mean((image1.astype(np.float32) - image2.astype(np.float32)) ** 2)
    logger.debug(f"Computed MSE: {mse:.4f}")
    return float(mse)


def compute_psnr(image1: np.ndarray, image2: np.ndarray) -> float:
    """
    Compute Peak Signal-to-Noise Ratio in dB (higher is better).

    Identical images yield ``inf``.
    """
    mse = compute_mse(image1, image2)
    if mse == 0:
        return float('inf')

    psnr = 20 * np.log10(255.0 / np.sqrt(mse))
    logger.debug(f"Computed PSNR: {psnr:.2f} dB")
    return float(psnr)


def compute_ssim(image1: np.ndarray, image2: np.ndarray, data_range: int = 255) -> float:
    """
    Compute the Structural Similarity Index between two images.

    Values range from -1 to 1, where 1 indicates identical images.

    Raises:
        InvalidArgumentError: If either side is shorter than SSIM_MIN_SIDE
    """
    image1, image2 = _aligned(image1, image2)
    if min(image1.shape[:2]) < SSIM_MIN_SIDE:
        raise InvalidArgumentError(
            f"SSIM needs images of at least {SSIM_MIN_SIDE}px per side, got {image1.shape[:2]}"
        )

    result = ssim(_to_batch(image1), _to_batch(image2), data_range=data_range, size_average=True).item()
    logger.debug(f"Computed SSIM: {result:.4f}")
    return result


def compute_ms_ssim(image1: np.ndarray, image2: np.ndarray, data_range: int = 255) -> float:
    """
    Compute the Multi-Scale Structural Similarity Index.

    MS-SSIM evaluates similarity at several scales and is the preferred
    perceptual metric for mosaics large enough to support it.

    Raises:
        InvalidArgumentError: If either side is shorter than MS_SSIM_MIN_SIDE
    """
    image1, image2 = _aligned(image1, image2)
    if min(image1.shape[:2]) < MS_SSIM_MIN_SIDE:
        raise InvalidArgumentError(
            f"MS-SSIM needs images of at least {MS_SSIM_MIN_SIDE}px per side, got {image1.shape[:2]}"
        )

    result = ms_ssim(_to_batch(image1), _to_batch(image2), data_range=data_range, size_average=True).item()
    logger.debug(f"Computed MS-SSIM: {result:.4f}")
    return result


def evaluate_mosaic_quality(original: np.ndarray, mosaic: np.ndarray) -> Dict[str, float]:
    """
    Evaluate a mosaic against its master image.

    MSE and PSNR are always reported; SSIM and MS-SSIM only when the image
    is large enough for their filter windows.

    Returns:
        dict: Metric name to value

    Example:
        >>> results = evaluate_mosaic_quality(master, mosaic)
        >>> sorted(results)
        ['ms_ssim', 'mse', 'psnr', 'ssim']
    """
    results = {
        "mse": compute_mse(original, mosaic),
        "psnr": compute_psnr(original, mosaic),
    }

    smallest_side = min(min(original.shape[:2]), min(mosaic.shape[:2]))
    if smallest_side >= SSIM_MIN_SIDE:
        results["ssim"] = compute_ssim(original, mosaic)
    if smallest_side >= MS_SSIM_MIN_SIDE:
        results["ms_ssim"] = compute_ms_ssim(original, mosaic)

    logger.info(f"Quality evaluation: {results}")
    return results
