"""
Exposure bracket: validated images, exposure times and camera shifts
"""

import logging
import math
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np

from .conversion import ImageLike, to_uint8_image
from .errors import (
    InvalidBracketSize,
    ExposureCountMismatch,
    MissingExposureMetadata,
    ImageDimensionMismatch,
    InvalidExposureTime,
    InvalidCameraShift,
)

logger = logging.getLogger(__name__)

MIN_BRACKET_SIZE = 2
DEFAULT_MAX_BRACKET_SIZE = 5


def exposure_time_from_metadata(metadata: Optional[Mapping[str, Any]], index: int) -> float:
    """Read ExposureTime from an image's properties

    Looks in the "{Exif}" dictionary first, then at the top level.

    Raises:
        MissingExposureMetadata: if no exposure time is present
    """
    if not metadata:
        raise MissingExposureMetadata(index)

    exif = metadata.get("{Exif}") or metadata.get("Exif") or {}
    value = exif.get("ExposureTime", metadata.get("ExposureTime"))
    if value is None:
        raise MissingExposureMetadata(index)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidExposureTime(f"Image {index} has unreadable ExposureTime {value!r}") from e


def validate_camera_shifts(camera_shifts, count: int) -> np.ndarray:
    """Return shifts as an (N, 2) int64 array of (dx, dy); None means all zero"""
    if camera_shifts is None:
        return np.zeros((count, 2), dtype=np.int64)

    shifts = np.asarray(camera_shifts)
    if shifts.shape != (count, 2):
        raise InvalidCameraShift(f"Expected {count} (dx, dy) shifts, got shape {shifts.shape}")
    if not np.issubdtype(shifts.dtype, np.integer):
        if not np.all(np.mod(shifts, 1) == 0):
            raise InvalidCameraShift("Camera shifts must be whole pixels")
    return shifts.astype(np.int64)


class ExposureBracket:
    """Photographs of one static scene taken at different exposure durations

    Images are quantised once to 8-bit bins. A fourth channel is treated as
    alpha: it never enters estimation or merging, and the first image's alpha
    is carried into the HDR result.

    Args:
        images: 2 to max_size decoded images (uint8, float 0-1, or tensors)
        exposure_times: seconds per image; read from metadata when omitted
        metadata: per-image property dictionaries; the first one is carried forward
        camera_shifts: (dx, dy) registration offset per image, default all zero
        max_size: upper bound on the bracket length
    """

    def __init__(self, images: Sequence[ImageLike],
                 exposure_times: Optional[Sequence[float]] = None,
                 metadata: Optional[Sequence[Optional[Mapping[str, Any]]]] = None,
                 camera_shifts=None,
                 max_size: int = DEFAULT_MAX_BRACKET_SIZE):
        images = list(images)
        if not MIN_BRACKET_SIZE <= len(images) <= max_size:
            raise InvalidBracketSize(len(images), max_size, MIN_BRACKET_SIZE)

        if metadata is not None and len(metadata) != len(images):
            raise ExposureCountMismatch(len(images), len(metadata))

        if exposure_times is None:
            if metadata is None:
                raise MissingExposureMetadata(0)
            exposure_times = [exposure_time_from_metadata(m, i) for i, m in enumerate(metadata)]
        exposure_times = list(exposure_times)
        if len(exposure_times) != len(images):
            raise ExposureCountMismatch(len(images), len(exposure_times))

        times = []
        for i, t in enumerate(exposure_times):
            if t is None:
                raise MissingExposureMetadata(i)
            try:
                t = float(t)
            except (TypeError, ValueError) as e:
                raise InvalidExposureTime(f"Exposure time of image {i} is not a number: {t!r}") from e
            if not math.isfinite(t) or t <= 0:
                raise InvalidExposureTime(f"Exposure time of image {i} must be positive, got {t}")
            times.append(t)

        quantised = [to_uint8_image(img) for img in images]
        shape = quantised[0].shape[:2]
        for i, img in enumerate(quantised):
            if img.shape[:2] != shape:
                raise ImageDimensionMismatch(
                    f"Image {i} is {img.shape[1]}x{img.shape[0]}, expected {shape[1]}x{shape[0]}"
                )
        if shape[0] == 0 or shape[1] == 0:
            raise ImageDimensionMismatch("Images must not be empty")

        self._stack = np.stack([img[:, :, :3] for img in quantised], axis=0)
        self._stack.flags.writeable = False
        first = quantised[0]
        self.alpha = first[:, :, 3].astype(np.float32) / 255.0 if first.shape[2] == 4 else None
        self.exposure_times = np.asarray(times, dtype=np.float32)
        self.camera_shifts = validate_camera_shifts(camera_shifts, len(images))
        self.metadata: Dict[str, Any] = dict(metadata[0] or {}) if metadata else {}
        self.max_size = max_size

        logger.info(f"Exposure bracket: {len(self)} images of {self.width}x{self.height}, "
                    f"times={[f'{t:.6f}' for t in times]}")

    def __len__(self):
        return self._stack.shape[0]

    @property
    def stack(self) -> np.ndarray:
        """Read-only (N, H, W, 3) uint8 array of intensity bins"""
        return self._stack

    @property
    def height(self) -> int:
        return self._stack.shape[1]

    @property
    def width(self) -> int:
        return self._stack.shape[2]

    def with_camera_shifts(self, camera_shifts) -> "ExposureBracket":
        """Copy of this bracket with different registration offsets"""
        clone = object.__new__(ExposureBracket)
        clone.__dict__.update(self.__dict__)
        clone.camera_shifts = validate_camera_shifts(camera_shifts, len(self))
        return clone
