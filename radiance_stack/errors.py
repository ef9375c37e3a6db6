"""
Typed errors raised by the HDR pipeline

Every precondition is checked before any compute stage runs, so callers can
catch these and recover. Stage failures abort only the call that raised them.
"""

from typing import Optional


class HDRError(Exception):
    """Base class for all pipeline errors"""


class InvalidBracketSize(HDRError, ValueError):
    """Bracket holds fewer than two images or more than the configured maximum"""

    def __init__(self, count: int, maximum: int, minimum: int = 2):
        self.count = count
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Image bracket length must be at least {minimum} and {maximum} at maximum, got {count}"
        )


class ExposureCountMismatch(HDRError, ValueError):
    def __init__(self, image_count: int, exposure_count: int):
        self.image_count = image_count
        self.exposure_count = exposure_count
        super().__init__(
            f"Each of the {image_count} input images requires an exposure time. "
            f"Only {exposure_count} could be found."
        )


class InvalidCurveLength(HDRError, ValueError):
    def __init__(self, length: int, reason: str):
        self.length = length
        super().__init__(f"Camera response length {length} is invalid: {reason}")


class MissingExposureMetadata(HDRError, KeyError):
    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Cannot read an exposure time for image {index}")

    def __str__(self):
        # KeyError quotes its message otherwise
        return self.args[0]


class ImageDimensionMismatch(HDRError, ValueError):
    pass


class InvalidExposureTime(HDRError, ValueError):
    pass


class InvalidCameraShift(HDRError, ValueError):
    pass


class InvalidConfiguration(HDRError, ValueError):
    pass


class ResourceAllocationFailure(HDRError, RuntimeError):
    """A compute buffer could not be created"""

    def __init__(self, resource: str, cause: Optional[BaseException] = None):
        self.resource = resource
        message = f"Could not allocate {resource}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class ComputeDispatchFailure(HDRError, RuntimeError):
    """A compute stage failed while executing"""

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        self.stage = stage
        message = f"Compute stage '{stage}' failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
