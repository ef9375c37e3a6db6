import numpy as np
import pytest

from radiance_stack import NumpyComputer, TorchComputer


def scene_radiance(height=64, width=64, low=0.5, high=500.0):
    """Log-spaced radiance ramp along x, slightly different per channel and row"""
    ramp = np.exp(np.linspace(np.log(low), np.log(high), width))
    rows = np.linspace(0.8, 1.2, height)[:, np.newaxis]
    channels = np.array([1.0, 0.9, 0.75])
    return ramp[np.newaxis, :, np.newaxis] * rows[:, :, np.newaxis] * channels


def capture(radiance, exposure_time, gamma=1.0):
    """8-bit capture of a scene through the response z = 255 * (X t)^(1 / gamma)"""
    exposure = np.clip(radiance * exposure_time, 0.0, 1.0)
    return np.rint(255.0 * exposure ** (1.0 / gamma)).astype(np.uint8)


@pytest.fixture
def make_bracket_images():
    def _make(exposure_times, gamma=1.0, height=64, width=64):
        radiance = scene_radiance(height, width)
        return [capture(radiance, t, gamma) for t in exposure_times]
    return _make


@pytest.fixture
def numpy_computer():
    return NumpyComputer()


@pytest.fixture
def torch_cpu_computer():
    return TorchComputer("cpu")


@pytest.fixture(params=["numpy", "torch"])
def computer(request):
    if request.param == "numpy":
        return NumpyComputer()
    return TorchComputer("cpu")
