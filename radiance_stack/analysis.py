"""
Dynamic range statistics of a radiance image

Numerical outliers from the merge tend to sit in the top percentile. The
analyzer reports the per-channel extremes and the value below which
clip_percentile of the pixel mass lies, so a downstream tone operator can
clip before display encoding. Pixels are never rewritten here.
"""

import logging
from typing import NamedTuple

import numpy as np

from .computer import ResponseComputer
from .errors import InvalidConfiguration
from .merge import HDRRadianceImage

logger = logging.getLogger(__name__)


class DynamicRange(NamedTuple):
    minimum: np.ndarray
    maximum: np.ndarray
    clip_threshold: np.ndarray
    histogram: np.ndarray
    percentile: float

    def clip(self, pixels: np.ndarray) -> np.ndarray:
        """Helper for downstream collaborators; returns a clipped copy"""
        clipped = np.array(pixels, dtype=np.float32, copy=True)
        clipped[:, :, :3] = np.minimum(clipped[:, :, :3], self.clip_threshold)
        return clipped


def clip_threshold(histogram: np.ndarray, minimum: float, maximum: float, percentile: float) -> float:
    """Walk the histogram from the top until the mass above exceeds 100 - percentile

    Returns the upper edge of the bucket where the walk stopped.
    """
    if maximum <= minimum:
        return float(maximum)

    total = histogram.sum()
    allowed = total * (100.0 - percentile) / 100.0
    edges = np.linspace(minimum, maximum, histogram.shape[0] + 1)

    above = 0
    for bucket in range(histogram.shape[0] - 1, -1, -1):
        above += histogram[bucket]
        if above > allowed:
            return float(edges[bucket + 1])
    return float(edges[0])


class DynamicRangeAnalyzer:
    """Min/max reduction, histogram, and percentile clip threshold per channel"""

    def __init__(self, computer: ResponseComputer, bins: int = 256, percentile: float = 99.0):
        if bins < 2:
            raise InvalidConfiguration(f"histogram needs at least 2 bins, got {bins}")
        if not 0.0 < percentile <= 100.0:
            raise InvalidConfiguration(f"percentile must be in (0, 100], got {percentile}")
        self.computer = computer
        self.bins = bins
        self.percentile = percentile

    def analyze(self, image) -> DynamicRange:
        """Compute statistics of an HDRRadianceImage or an (H, W, C) array"""
        pixels = image.pixels if isinstance(image, HDRRadianceImage) else np.asarray(image, dtype=np.float32)

        minimum, maximum = self.computer.dispatch("min_max", self.computer.min_max, pixels)
        self.computer.synchronize()
        histogram = self.computer.dispatch("histogram", self.computer.histogram,
                                           pixels, minimum, maximum, self.bins)
        self.computer.synchronize()

        threshold = np.array([
            clip_threshold(histogram[:, c], float(minimum[c]), float(maximum[c]), self.percentile)
            for c in range(3)
        ], dtype=np.float32)
        # float32 rounding of linspace edges must not leave the [min, max] range
        threshold = np.clip(threshold, minimum, maximum)

        logger.info(f"Dynamic range: min={minimum.tolist()}, max={maximum.tolist()}, "
                    f"clip@{self.percentile:g}%={threshold.tolist()}")

        result = DynamicRange(minimum, maximum, threshold, histogram, self.percentile)
        if isinstance(image, HDRRadianceImage):
            image.dynamic_range = result
        return result
