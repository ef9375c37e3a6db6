"""
Deterministic CPU backend on numpy, OpenCV and scipy
"""

import logging
from typing import Tuple

import cv2
import numpy as np
from scipy import ndimage

from .computer import ResponseComputer, block_grid, interpolate_unobserved, MERGE_EPSILON
from .settings import RESPONSE_LENGTH

logger = logging.getLogger(__name__)

CHANNELS = np.arange(3)


def shift_image(image: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """Sample image[y + dy, x + dx], replicating the border"""
    if dx == 0 and dy == 0:
        return image
    height, width = image.shape[:2]
    translation = np.float32([[1, 0, dx], [0, 1, dy]])
    return cv2.warpAffine(image.copy(), translation, (width, height),
                          flags=cv2.INTER_NEAREST | cv2.WARP_INVERSE_MAP,
                          borderMode=cv2.BORDER_REPLICATE)


def estimate_radiance(bins: np.ndarray, exposure_times: np.ndarray,
                      response: np.ndarray, weights: np.ndarray, fallback: bool = True) -> np.ndarray:
    """Weighted radiance per pixel: sum w f(z) / t over sum w

    Pixels whose weights are all zero fall back to the best-exposing image:
    the shortest exposure when the pixel is bright across the bracket, the
    longest otherwise. Without fallback they are left at zero.
    """
    f = response.astype(np.float64)
    w = weights.astype(np.float64)
    t = exposure_times.astype(np.float64)[:, np.newaxis, np.newaxis, np.newaxis]

    wz = w[bins, CHANNELS]
    numerator = np.sum(wz * f[bins, CHANNELS] / t, axis=0)
    denominator = np.sum(wz, axis=0)

    valid = denominator > MERGE_EPSILON
    if np.all(valid):
        return numerator / denominator
    if not fallback:
        return np.where(valid, numerator / np.where(valid, denominator, 1.0), 0.0)

    shortest = int(np.argmin(exposure_times))
    longest = int(np.argmax(exposure_times))
    bright = bins.mean(axis=0) > 127.5
    best = np.where(bright,
                    f[bins[shortest], CHANNELS] / t[shortest],
                    f[bins[longest], CHANNELS] / t[longest])
    logger.warning(f"{np.count_nonzero(~valid)} samples carry zero weight in every exposure, using fallback")
    return np.where(valid, numerator / np.where(valid, denominator, 1.0), best)


class NumpyComputer(ResponseComputer):
    """Vectorised CPU execution; results are bit-for-bit reproducible"""

    name = "numpy"

    def load_bracket(self, stack: np.ndarray, camera_shifts: np.ndarray) -> np.ndarray:
        shifted = [shift_image(img, int(dx), int(dy)) for img, (dx, dy) in zip(stack, camera_shifts)]
        return np.stack(shifted, axis=0).astype(np.intp)

    def count_cardinality(self, images: np.ndarray) -> np.ndarray:
        replicas = self.replication_factor
        pixel_count = images.shape[0] * images.shape[1] * images.shape[2]

        # Phase 1: pixel p counts into replica p % R
        replica = (np.arange(pixel_count) % replicas).reshape(images.shape[:3])
        slots = (replica[..., np.newaxis] * RESPONSE_LENGTH + images) * 3 + CHANNELS
        partial = np.bincount(slots.ravel(), minlength=replicas * RESPONSE_LENGTH * 3)

        # Phase 2: sum the replicas
        return partial.reshape(replicas, RESPONSE_LENGTH, 3).sum(axis=0).astype(np.int64)

    def accumulate(self, images: np.ndarray, exposure_times: np.ndarray,
                   response: np.ndarray, weights: np.ndarray) -> np.ndarray:
        height, width = images.shape[1:3]
        rows, cols = block_grid(height, width, self.block_size)

        # Pixels with no weighted sample deposit nothing, so need no fallback
        radiance = estimate_radiance(images, exposure_times, response, weights, fallback=False)
        t = exposure_times.astype(np.float64)[:, np.newaxis, np.newaxis, np.newaxis]
        deposits = weights.astype(np.float64)[images, CHANNELS] * radiance[np.newaxis] * t

        ys = np.arange(height) // self.block_size
        xs = np.arange(width) // self.block_size
        block = ys[:, np.newaxis] * cols + xs[np.newaxis, :]
        slots = (block[np.newaxis, :, :, np.newaxis] * RESPONSE_LENGTH + images) * 3 + CHANNELS

        sums = np.bincount(slots.ravel(), weights=deposits.ravel(),
                           minlength=rows * cols * RESPONSE_LENGTH * 3)
        return sums.reshape(rows * cols, RESPONSE_LENGTH, 3)

    def reduce(self, partial_sums: np.ndarray, cardinality: np.ndarray, response: np.ndarray) -> np.ndarray:
        totals = partial_sums.sum(axis=0)
        observed = cardinality > 0
        values = np.divide(totals, cardinality.astype(np.float64), out=np.zeros_like(totals), where=observed)
        return interpolate_unobserved(values, observed, response).astype(np.float32)

    def median_filter(self, response: np.ndarray, window: int) -> np.ndarray:
        return ndimage.median_filter(response, size=(window, 1), mode="nearest").astype(np.float32)

    def merge(self, images: np.ndarray, exposure_times: np.ndarray,
              response: np.ndarray, weights: np.ndarray) -> np.ndarray:
        return estimate_radiance(images, exposure_times, response, weights).astype(np.float32)

    def min_max(self, pixels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        minimum = np.empty(3, dtype=np.float32)
        maximum = np.empty(3, dtype=np.float32)
        for c in range(3):
            minimum[c], maximum[c], _, _ = cv2.minMaxLoc(np.ascontiguousarray(pixels[:, :, c], dtype=np.float32))
        return minimum, maximum

    def histogram(self, pixels: np.ndarray, minimum: np.ndarray, maximum: np.ndarray, bins: int) -> np.ndarray:
        hist = np.zeros((bins, 3), dtype=np.int64)
        for c in range(3):
            channel = pixels[:, :, c].ravel()
            if maximum[c] <= minimum[c]:
                hist[0, c] = channel.size
                continue
            hist[:, c], _ = np.histogram(channel, bins=bins, range=(float(minimum[c]), float(maximum[c])))
        return hist
