"""
Camera parameters: response curve and weight function

Both are (256, 3) float32 tables indexed by 8-bit intensity, one column per
RGB channel.
"""

import logging
from typing import Optional

import numpy as np

from .errors import InvalidCurveLength, InvalidConfiguration
from .settings import RESPONSE_LENGTH

logger = logging.getLogger(__name__)


def weight_function(training_weight: float) -> np.ndarray:
    """Bell-shaped weighting, highest at mid-gray and near zero at the extremes"""
    z = np.arange(RESPONSE_LENGTH, dtype=np.float64)
    bell = np.exp(-training_weight * ((z - 127.5) / 127.5) ** 2)
    return np.repeat(bell[:, np.newaxis], 3, axis=1).astype(np.float32)


def sample_weights(weights: np.ndarray) -> np.ndarray:
    """Weights for response estimation: clipped levels 0 and 255 count for nothing

    A clipped sample only bounds the radiance, so it neither feeds the
    per-pixel radiance estimate nor the response at its own level.
    """
    table = np.array(weights, dtype=np.float32)
    table[0] = 0.0
    table[-1] = 0.0
    return table


def initial_response() -> np.ndarray:
    """Linear ramp from 0 to 2 over the 256 bins, the estimation seed"""
    ramp = np.arange(0.0, 2.0, 2.0 / RESPONSE_LENGTH, dtype=np.float64)
    return np.repeat(ramp[:, np.newaxis], 3, axis=1).astype(np.float32)


def linear_response() -> np.ndarray:
    """Response of a linear camera, already normalised so entry 255 is 1"""
    ramp = np.arange(RESPONSE_LENGTH, dtype=np.float64) / (RESPONSE_LENGTH - 1)
    return np.repeat(ramp[:, np.newaxis], 3, axis=1).astype(np.float32)


def validate_curve(curve, name: str = "response") -> np.ndarray:
    """Check a per-intensity table and return it as (256, 3) float32

    A 1D table is broadcast to all three channels.

    Raises:
        InvalidCurveLength: if the length is not a power of two or not 256
    """
    table = np.asarray(curve, dtype=np.float32)
    if table.ndim == 1:
        table = np.repeat(table[:, np.newaxis], 3, axis=1)
    if table.ndim != 2 or table.shape[1] != 3:
        raise InvalidCurveLength(table.shape[0] if table.ndim else 0, f"{name} must have 3 channels, got shape {table.shape}")

    length = table.shape[0]
    if length == 0 or length & (length - 1) != 0:
        raise InvalidCurveLength(length, "not a power of two")
    if length != RESPONSE_LENGTH:
        raise InvalidCurveLength(length, f"{name} needs one entry per 8-bit level ({RESPONSE_LENGTH})")
    if not np.all(np.isfinite(table)):
        raise InvalidCurveLength(length, f"{name} contains non-finite values")
    return np.ascontiguousarray(table)


def normalize_response(curve: np.ndarray) -> np.ndarray:
    """Scale every channel so its entry at index 255 equals 1

    A channel without a positive, finite entry 255 carries no usable signal
    and falls back to the linear response.
    """
    curve = curve.astype(np.float64)
    reference = curve[-1]
    usable = np.isfinite(reference) & (reference > 0)
    if not np.all(usable):
        logger.warning(f"Channels {np.flatnonzero(~usable).tolist()} have no usable response, using linear")
    normalized = np.where(usable, curve / np.where(usable, reference, 1.0), linear_response())
    return normalized.astype(np.float32)


class CameraParameters:
    """Response curve plus weight function for one camera

    Instances are read-only: the arrays are copied and frozen on creation.
    """

    def __init__(self, response, weights, training_weight: Optional[float] = None):
        response = validate_curve(response, "response").copy()
        weights = validate_curve(weights, "weight function").copy()
        if np.any(weights < 0):
            raise InvalidConfiguration("weight function must be non-negative")
        response.flags.writeable = False
        weights.flags.writeable = False
        self.response = response
        self.weights = weights
        self.training_weight = training_weight

    @classmethod
    def with_training_weight(cls, training_weight: float = 4.0) -> "CameraParameters":
        """Initial guess used before estimation: linear ramp and bell weights"""
        return cls(initial_response(), weight_function(training_weight), training_weight)

    @classmethod
    def linear(cls, training_weight: float = 4.0) -> "CameraParameters":
        return cls(linear_response(), weight_function(training_weight), training_weight)

    def __repr__(self):
        return (f"CameraParameters(training_weight={self.training_weight}, "
                f"response[255]={self.response[-1].tolist()})")
