"""
Camera response estimation (radiometric calibration)

The estimator drives the compute stages in a fixed order:

    cardinality (once)
    repeat N times: accumulate -> reduce -> median filter
    spline smoothing (once) -> normalise so entry 255 is 1

Every iteration depends on the previous one's curve, so iterations never
overlap; each stage is followed by a synchronise on the compute backend.
"""

import enum
import logging
from typing import List, Optional

import numpy as np

from .bracket import ExposureBracket
from .camera import CameraParameters, initial_response, weight_function, normalize_response, sample_weights
from .computer import ResponseComputer
from .errors import InvalidConfiguration
from .settings import HDRSettings

logger = logging.getLogger(__name__)

# Bin that anchors the curve's scale between iterations
MID_LEVEL = 128


def anchor_response(response: np.ndarray, iteration: int = 0) -> np.ndarray:
    """Rescale each channel so its mid-level entry is 1

    A channel whose mid-level entry is not positive restarts from the seed.
    """
    anchor = response[MID_LEVEL].astype(np.float64)
    usable = np.isfinite(anchor) & (anchor > 0)
    if not np.all(usable):
        logger.warning(f"Iteration {iteration + 1}: channels {np.flatnonzero(~usable).tolist()} "
                       f"have no positive mid-level response, restarting them from the seed")
    scaled = np.where(usable, response / np.where(usable, anchor, 1.0), initial_response())
    return scaled.astype(np.float32)


class EstimationState(enum.Enum):
    ACCUMULATING = "accumulating"
    FINALIZING = "finalizing"
    DONE = "done"


class ResponseEstimator:
    """Estimates the camera response curve of an exposure bracket

    Args:
        bracket: validated exposure bracket; its camera shifts are applied
        computer: compute backend the stages run on
        settings: training weight, median window, control points, ...
    """

    def __init__(self, bracket: ExposureBracket, computer: ResponseComputer,
                 settings: Optional[HDRSettings] = None):
        self.bracket = bracket
        self.computer = computer
        self.settings = settings or HDRSettings()
        self.weights = weight_function(self.settings.training_weight)
        self.sample_weights = sample_weights(self.weights)
        self.state = EstimationState.ACCUMULATING
        self.iteration_deltas: List[float] = []

    def _stage(self, name: str, kernel, *args):
        result = self.computer.dispatch(name, kernel, *args)
        self.computer.synchronize()
        return result

    def estimate_camera_response(self, iterations: Optional[int] = None) -> np.ndarray:
        """Run one estimation and return the finalised (256, 3) response

        Each call is an independent run seeded with the linear 0..2 ramp; the
        returned array is read-only and no later call mutates it.

        Args:
            iterations: accumulation passes, defaults to settings.iterations

        Returns:
            np.ndarray: response normalised so entry 255 equals 1 per channel
        """
        iterations = self.settings.iterations if iterations is None else iterations
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise InvalidConfiguration(f"iterations must be a positive integer, got {iterations!r}")

        logger.info("=" * 60)
        logger.info("CAMERA RESPONSE ESTIMATION")
        logger.info(f"  Backend: {self.computer.name}, iterations: {iterations}, "
                    f"training weight: {self.settings.training_weight}")
        logger.info("=" * 60)

        self.state = EstimationState.ACCUMULATING
        self.iteration_deltas = []
        response = initial_response()
        times = self.bracket.exposure_times

        images = self._stage("load_bracket", self.computer.load_bracket,
                             self.bracket.stack, self.bracket.camera_shifts)
        cardinality = self._stage("cardinality", self.computer.count_cardinality, images)
        logger.info(f"  Cardinality: {int(cardinality.sum())} samples, "
                    f"{int(np.count_nonzero(cardinality.sum(axis=1)))} bins observed")
        weighted_cardinality = cardinality * self.sample_weights.astype(np.float64)

        for iteration in range(iterations):
            previous = response
            partial_sums = self._stage("accumulate", self.computer.accumulate,
                                       images, times, response, self.sample_weights)
            response = self._stage("reduce", self.computer.reduce, partial_sums, weighted_cardinality, response)
            del partial_sums
            response = self._stage("median_filter", self.computer.median_filter,
                                   response, self.settings.median_window)

            response = anchor_response(response, iteration)

            delta = float(np.mean(np.abs(response - previous)))
            self.iteration_deltas.append(delta)
            logger.info(f"  Iteration {iteration + 1}/{iterations}: mean change {delta:.6f}")

        self.state = EstimationState.FINALIZING
        response = self._stage("smooth_response", self.computer.smooth_response,
                               response, self.weights, self.settings.control_point_count)
        response = normalize_response(response)
        response.flags.writeable = False

        self.state = EstimationState.DONE
        logger.info(f"  Response range: [{response.min():.6f}, {response.max():.6f}], "
                    f"response[{MID_LEVEL}]={response[MID_LEVEL].round(4).tolist()}")
        return response

    def estimate_camera_parameters(self, iterations: Optional[int] = None) -> CameraParameters:
        """Estimated response together with the weight function it was trained with"""
        response = self.estimate_camera_response(iterations)
        return CameraParameters(response, self.weights, self.settings.training_weight)
