"""
Compute backends for the HDR pipeline

A ResponseComputer is the execution context every stage runs on. It is
constructed explicitly and passed to the estimator, merger and analyzer, so a
GPU backend and a deterministic CPU backend are interchangeable.

Stages are data-parallel inside and strictly sequential between each other:
callers invoke synchronize() at every stage boundary. The two places where
parallel writes would race (cardinality counting and per-bin accumulation)
are two-phase: replicated or block-local partial results first, a reduction
second.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Tuple

import numpy as np
from scipy.interpolate import LSQUnivariateSpline

from .errors import ComputeDispatchFailure, ResourceAllocationFailure
from .settings import RESPONSE_LENGTH

logger = logging.getLogger(__name__)

# Counters per replicated histogram: 257 bins x 3 channels of 4-byte uints
HISTOGRAM_REPLICA_BYTES = 4 * 257 * 3
PROCESSORS_PER_BLOCK = 4

MIN_SPLINE_WEIGHT = 1e-3
MERGE_EPSILON = 1e-12


def replication_factor(shared_memory_bytes: int) -> int:
    """Number of partial histograms that fit the fast-memory budget"""
    return max(shared_memory_bytes // (PROCESSORS_PER_BLOCK * HISTOGRAM_REPLICA_BYTES), 1)


def control_points(count: int) -> np.ndarray:
    """Evenly spaced curve indices used as spline knots"""
    return np.unique(np.rint(np.linspace(0, RESPONSE_LENGTH - 1, count)).astype(np.int64))


def block_grid(height: int, width: int, block_size: int) -> Tuple[int, int]:
    """Tiles per column and row; edge tiles may be partial"""
    return -(-height // block_size), -(-width // block_size)


def interpolate_unobserved(values: np.ndarray, observed: np.ndarray, previous: np.ndarray) -> np.ndarray:
    """Fill bins without samples from their observed neighbours

    Edge bins take the nearest observed value. A channel with no observed
    bin keeps its previous values.
    """
    result = values.copy()
    bins = np.arange(values.shape[0])
    for c in range(values.shape[1]):
        seen = observed[:, c]
        if not np.any(seen):
            logger.warning(f"Channel {c}: no observed bins, keeping previous response")
            result[:, c] = previous[:, c]
        elif not np.all(seen):
            result[~seen, c] = np.interp(bins[~seen], bins[seen], values[seen, c])
    return result


class ResponseComputer(ABC):
    """Execution context for the response estimation and merge stages

    Subclasses hold the bracket on their device between stages. Small
    per-intensity tables (curves, weights) travel as (256, 3) numpy arrays.
    """

    name = "abstract"
    allocation_errors: Tuple[type, ...] = (MemoryError,)

    def __init__(self, block_size: int = 16, shared_memory_bytes: int = 32768):
        self.block_size = block_size
        self.replication_factor = replication_factor(shared_memory_bytes)

    def dispatch(self, stage: str, kernel: Callable[..., Any], *args, **kwargs):
        """Run one stage, translating backend failures into typed errors"""
        try:
            return kernel(*args, **kwargs)
        except (ResourceAllocationFailure, ComputeDispatchFailure):
            raise
        except self.allocation_errors as e:
            logger.error(f"[{self.name}] out of memory in stage '{stage}'")
            raise ResourceAllocationFailure(f"buffers for stage '{stage}'", e) from e
        except (RuntimeError, ValueError, FloatingPointError) as e:
            logger.error(f"[{self.name}] stage '{stage}' failed: {e}")
            raise ComputeDispatchFailure(stage, e) from e

    def synchronize(self) -> None:
        """Block until all submitted work is complete and host-visible"""

    @abstractmethod
    def load_bracket(self, stack: np.ndarray, camera_shifts: np.ndarray) -> Any:
        """Upload an (N, H, W, 3) uint8 stack with shifts applied"""

    @abstractmethod
    def count_cardinality(self, images: Any) -> np.ndarray:
        """(256, 3) int64 pixel counts per bin and channel"""

    @abstractmethod
    def accumulate(self, images: Any, exposure_times: np.ndarray,
                   response: np.ndarray, weights: np.ndarray) -> Any:
        """Block partial sums of weighted deposits w(z) E t, shaped (blocks, 256, 3)"""

    @abstractmethod
    def reduce(self, partial_sums: Any, cardinality: np.ndarray, response: np.ndarray) -> np.ndarray:
        """Fold block partial sums into a new (256, 3) response

        cardinality is the weighted sample count per bin; bins where it is
        zero are interpolated from their neighbours.
        """

    @abstractmethod
    def median_filter(self, response: np.ndarray, window: int) -> np.ndarray:
        pass

    @abstractmethod
    def merge(self, images: Any, exposure_times: np.ndarray,
              response: np.ndarray, weights: np.ndarray) -> np.ndarray:
        """(H, W, 3) float32 radiance"""

    @abstractmethod
    def min_max(self, pixels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Per-channel minimum and maximum of an (H, W, 3) image"""

    @abstractmethod
    def histogram(self, pixels: np.ndarray, minimum: np.ndarray, maximum: np.ndarray, bins: int) -> np.ndarray:
        """(bins, 3) per-channel histogram spanning [minimum, maximum]"""

    def smooth_response(self, response: np.ndarray, weights: np.ndarray, control_point_count: int) -> np.ndarray:
        """Weighted cubic spline through evenly spaced control points

        The interior control points are the spline knots; every bin is a
        sample weighted by the weight function, so reliable mid-tones dominate
        the fit. The fitted curve is clamped at zero and made non-decreasing.
        Runs on the host: the table is only 256 entries long.
        """
        knots = control_points(control_point_count)
        interior = knots[1:-1].astype(np.float64)
        x = np.arange(RESPONSE_LENGTH, dtype=np.float64)

        smoothed = np.empty_like(response, dtype=np.float32)
        for c in range(response.shape[1]):
            w = np.maximum(weights[:, c].astype(np.float64), MIN_SPLINE_WEIGHT)
            spline = LSQUnivariateSpline(x, response[:, c].astype(np.float64), interior, w=w, k=3)
            fitted = np.maximum(spline(x), 0.0)
            smoothed[:, c] = np.maximum.accumulate(fitted)

        logger.info(f"[{self.name}] spline smoothing through {len(knots)} control points")
        return smoothed
