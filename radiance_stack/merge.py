"""
HDR merge: combine an exposure bracket into linear radiance
"""

import logging
from typing import Any, Dict, Optional

import numpy as np
import torch

from .bracket import ExposureBracket
from .camera import CameraParameters
from .computer import ResponseComputer
from .conversion import radiance_to_tensor

logger = logging.getLogger(__name__)


class HDRRadianceImage:
    """Linear radiance result of a merge

    Attributes:
        pixels: (H, W, 3) or (H, W, 4) float32; the fourth channel is the
            first input image's alpha
        metadata: properties carried over from the first bracket image
        dynamic_range: statistics from DynamicRangeAnalyzer, if computed
    """

    def __init__(self, pixels: np.ndarray, metadata: Optional[Dict[str, Any]] = None,
                 dynamic_range=None):
        self.pixels = pixels
        self.metadata = dict(metadata or {})
        self.dynamic_range = dynamic_range

    @property
    def radiance(self) -> np.ndarray:
        """RGB radiance without alpha"""
        return self.pixels[:, :, :3]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def channels(self) -> int:
        return self.pixels.shape[2]

    def to_tensor(self) -> torch.Tensor:
        """[1, H, W, C] float32 tensor with HDR values above 1.0 preserved"""
        return radiance_to_tensor(self.pixels)

    def __repr__(self):
        return f"HDRRadianceImage({self.width}x{self.height}x{self.channels})"


class HDRMerger:
    """Weighted merge of a bracket using a response curve and weight function

    For each pixel and channel the radiance is sum w(z) f(z) / t over sum w(z)
    across the bracket. Pixels with zero total weight take the value from the
    image whose exposure best suits them (see NumpyComputer / TorchComputer).
    """

    def __init__(self, computer: ResponseComputer):
        self.computer = computer

    def _stage(self, name: str, kernel, *args):
        result = self.computer.dispatch(name, kernel, *args)
        self.computer.synchronize()
        return result

    def merge(self, bracket: ExposureBracket, camera_parameters: CameraParameters) -> HDRRadianceImage:
        logger.info(f"Merging {len(bracket)} exposures ({bracket.width}x{bracket.height}) on {self.computer.name}")

        images = self._stage("load_bracket", self.computer.load_bracket,
                             bracket.stack, bracket.camera_shifts)
        radiance = self._stage("merge", self.computer.merge, images, bracket.exposure_times,
                               camera_parameters.response, camera_parameters.weights)

        if bracket.alpha is not None:
            pixels = np.dstack([radiance, bracket.alpha]).astype(np.float32)
        else:
            pixels = np.ascontiguousarray(radiance, dtype=np.float32)

        logger.info(f"  Radiance range: [{radiance.min():.6f}, {radiance.max():.6f}], mean {radiance.mean():.6f}")
        return HDRRadianceImage(pixels, bracket.metadata)
