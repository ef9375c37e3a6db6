"""
Radiance Stack - camera response estimation and HDR radiance merging

Turns a bracket of differently-exposed 8-bit photographs into one linear
high-dynamic-range radiance image:

1. Optional radiometric calibration - estimates the camera response curve
   from the bracket itself (iterative, histogram normalised, smoothed)
2. HDR merge - weighted combination of all exposures into linear radiance
3. Dynamic range analysis - extremes and a percentile clip threshold

Compute stages run on an injected backend: TorchComputer (CUDA or CPU) or
the deterministic NumpyComputer.

Requirements:
- NumPy, OpenCV (cv2), SciPy, PyTorch
"""

from .version import __version__, get_version_string, get_full_version_info
from .analysis import DynamicRange, DynamicRangeAnalyzer
from .bracket import ExposureBracket
from .camera import CameraParameters, weight_function, initial_response, linear_response
from .computer import ResponseComputer
from .errors import (
    HDRError,
    InvalidBracketSize,
    ExposureCountMismatch,
    InvalidCurveLength,
    MissingExposureMetadata,
    ImageDimensionMismatch,
    InvalidExposureTime,
    InvalidCameraShift,
    InvalidConfiguration,
    ResourceAllocationFailure,
    ComputeDispatchFailure,
)
from .estimation import EstimationState, ResponseEstimator
from .merge import HDRMerger, HDRRadianceImage
from .numpy_computer import NumpyComputer
from .processor import HDRProcessor, default_computer
from .settings import HDRSettings, SETTINGS_SCHEMA
from .torch_computer import TorchComputer

__all__ = [
    '__version__',
    'get_version_string',
    'get_full_version_info',
    'CameraParameters',
    'ComputeDispatchFailure',
    'DynamicRange',
    'DynamicRangeAnalyzer',
    'EstimationState',
    'ExposureBracket',
    'ExposureCountMismatch',
    'HDRError',
    'HDRMerger',
    'HDRProcessor',
    'HDRRadianceImage',
    'HDRSettings',
    'ImageDimensionMismatch',
    'InvalidBracketSize',
    'InvalidCameraShift',
    'InvalidConfiguration',
    'InvalidCurveLength',
    'InvalidExposureTime',
    'MissingExposureMetadata',
    'NumpyComputer',
    'ResourceAllocationFailure',
    'ResponseComputer',
    'ResponseEstimator',
    'SETTINGS_SCHEMA',
    'TorchComputer',
    'default_computer',
    'initial_response',
    'linear_response',
    'weight_function',
]
