"""
Radiance Stack - HDR processing entry point

Wires bracket validation, optional camera response estimation, the HDR merge
and the dynamic range analysis into a single call.
"""

import logging
from typing import Any, Mapping, Optional, Sequence

import torch

from .analysis import DynamicRangeAnalyzer
from .bracket import ExposureBracket
from .camera import CameraParameters
from .computer import ResponseComputer
from .conversion import ImageLike
from .errors import HDRError
from .estimation import ResponseEstimator
from .merge import HDRMerger, HDRRadianceImage
from .numpy_computer import NumpyComputer
from .settings import HDRSettings
from .torch_computer import TorchComputer

logger = logging.getLogger(__name__)


def default_computer(settings: Optional[HDRSettings] = None) -> ResponseComputer:
    """TorchComputer on CUDA when a GPU is present, NumpyComputer otherwise"""
    settings = settings or HDRSettings()
    if torch.cuda.is_available():
        return TorchComputer("cuda", block_size=settings.block_size,
                             shared_memory_bytes=settings.shared_memory_bytes)
    return NumpyComputer(block_size=settings.block_size,
                         shared_memory_bytes=settings.shared_memory_bytes)


class HDRProcessor:
    """Camera response estimation and HDR merging on one compute backend

    Args:
        computer: execution context; see default_computer()
        settings: pipeline options
    """

    def __init__(self, computer: Optional[ResponseComputer] = None,
                 settings: Optional[HDRSettings] = None):
        self.settings = settings or HDRSettings()
        self.computer = computer or default_computer(self.settings)
        self.merger = HDRMerger(self.computer)
        self.analyzer = DynamicRangeAnalyzer(self.computer, bins=self.settings.histogram_bins,
                                             percentile=self.settings.clip_percentile)

    def make_bracket(self, images: Sequence[ImageLike],
                     exposure_times: Optional[Sequence[float]] = None,
                     metadata: Optional[Sequence[Optional[Mapping[str, Any]]]] = None,
                     camera_shifts=None) -> ExposureBracket:
        return ExposureBracket(images, exposure_times, metadata, camera_shifts,
                               max_size=self.settings.max_bracket_size)

    def estimate_response(self, bracket: ExposureBracket,
                          iterations: Optional[int] = None) -> CameraParameters:
        """Estimate camera parameters from a bracket"""
        estimator = ResponseEstimator(bracket, self.computer, self.settings)
        return estimator.estimate_camera_parameters(iterations)

    def make_hdr(self, bracket: ExposureBracket,
                 camera_parameters: Optional[CameraParameters] = None,
                 analyze: bool = True) -> HDRRadianceImage:
        """Merge a bracket, estimating the response first if none is given"""
        if camera_parameters is None:
            logger.info("No camera parameters supplied, estimating the response first")
            # Estimation always runs unregistered
            camera_parameters = self.estimate_response(bracket.with_camera_shifts(None))

        hdr = self.merger.merge(bracket, camera_parameters)
        if analyze:
            self.analyzer.analyze(hdr)
        return hdr

    def process(self, images: Sequence[ImageLike],
                exposure_times: Optional[Sequence[float]] = None,
                metadata: Optional[Sequence[Optional[Mapping[str, Any]]]] = None,
                camera_parameters: Optional[CameraParameters] = None,
                camera_shifts=None,
                analyze: bool = True) -> HDRRadianceImage:
        """
        Process an exposure bracket into linear radiance

        Args:
            images: 2 to max_bracket_size decoded images of identical size
            exposure_times: exposure time per image in seconds; read from the
                "{Exif}" metadata when omitted
            metadata: per-image properties, the first one is carried to the result
            camera_parameters: known response + weights; estimated when None
            camera_shifts: (dx, dy) per image for the merge, default all zero
            analyze: compute min / max / clip threshold of the result

        Returns:
            HDRRadianceImage: linear radiance (values can exceed 1.0)

        Raises:
            HDRError: a typed precondition or compute failure; nothing partial
                is returned
        """
        try:
            bracket = self.make_bracket(images, exposure_times, metadata, camera_shifts)
            hdr = self.make_hdr(bracket, camera_parameters, analyze=analyze)
        except HDRError as e:
            logger.error(f"HDR processing error: {e}")
            logger.error(f"Image count: {len(images)}")
            logger.error(f"Exposure times: {exposure_times}")
            raise

        logger.info(f"HDR merge completed: {hdr.width}x{hdr.height}x{hdr.channels}")
        return hdr
