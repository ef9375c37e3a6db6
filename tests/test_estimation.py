import numpy as np
import pytest

from radiance_stack import (
    ComputeDispatchFailure,
    EstimationState,
    ExposureBracket,
    HDRProcessor,
    HDRSettings,
    InvalidConfiguration,
    NumpyComputer,
    ResourceAllocationFailure,
    ResponseEstimator,
    linear_response,
)

TIMES = [1 / 60, 1 / 15, 1 / 4]


@pytest.fixture
def small_bracket(make_bracket_images):
    return ExposureBracket(make_bracket_images(TIMES, gamma=2.2, height=16, width=16), TIMES)


def test_estimated_response_is_normalised_and_monotone(small_bracket, computer):
    estimator = ResponseEstimator(small_bracket, computer)
    response = estimator.estimate_camera_response(10)

    assert response.shape == (256, 3)
    assert response.dtype == np.float32
    assert np.all(np.isfinite(response))
    np.testing.assert_allclose(response[255], 1.0, rtol=1e-6)
    assert np.all(response >= 0)
    assert np.all(np.diff(response, axis=0) >= 0)
    assert estimator.state is EstimationState.DONE
    assert len(estimator.iteration_deltas) == 10


def test_linear_camera_converges(make_bracket_images):
    bracket = ExposureBracket(make_bracket_images(TIMES, gamma=1.0), TIMES)
    estimator = ResponseEstimator(bracket, NumpyComputer())
    response = estimator.estimate_camera_response(15)

    assert estimator.iteration_deltas[-1] < 5e-3
    # Shape of a linear camera: doubling the bin doubles the response
    np.testing.assert_allclose(response[128] / response[64], 2.0, rtol=0.1)


@pytest.mark.parametrize("gamma", [1.6, 2.2])
def test_gamma_camera_converges(make_bracket_images, gamma):
    bracket = ExposureBracket(make_bracket_images(TIMES, gamma=gamma), TIMES)
    estimator = ResponseEstimator(bracket, NumpyComputer())
    estimator.estimate_camera_response(15)

    deltas = estimator.iteration_deltas
    assert np.all(np.isfinite(deltas))
    assert deltas[-1] < 2e-2
    assert deltas[-1] < deltas[0]


@pytest.mark.parametrize("gamma", [1.0, 2.2])
def test_recovers_known_response(make_bracket_images, computer, gamma):
    bracket = ExposureBracket(make_bracket_images(TIMES, gamma=gamma), TIMES)
    response = ResponseEstimator(bracket, computer).estimate_camera_response(30)

    # z = 255 (X t)^(1 / gamma), so doubling the bin multiplies the response by 2^gamma
    np.testing.assert_allclose(response[128] / response[64], 2.0 ** gamma, rtol=0.15)
    np.testing.assert_allclose(response[192] / response[128], 1.5 ** gamma, rtol=0.15)


def _degenerate(kind, make_bracket_images):
    if kind == "uniform":
        return [np.full((16, 16, 3), 100, dtype=np.uint8) for _ in TIMES]
    if kind == "saturated":
        return [np.full((16, 16, 3), 255, dtype=np.uint8) for _ in TIMES]
    if kind == "black":
        return [np.zeros((16, 16, 3), dtype=np.uint8) for _ in TIMES]

    images = make_bracket_images(TIMES, gamma=2.2, height=16, width=16)
    for image in images:
        if kind == "black_channel":
            image[..., 2] = 0
        elif kind == "constant_channel":
            image[..., 1] = 77
    return images


@pytest.mark.parametrize("kind", ["uniform", "saturated", "black", "black_channel", "constant_channel"])
def test_degenerate_bracket_still_normalises(make_bracket_images, computer, kind):
    bracket = ExposureBracket(_degenerate(kind, make_bracket_images), TIMES)
    response = ResponseEstimator(bracket, computer).estimate_camera_response(10)

    assert np.all(np.isfinite(response))
    np.testing.assert_allclose(response[255], 1.0, rtol=1e-6)
    assert np.all(response >= 0)
    assert np.all(np.diff(response, axis=0) >= 0)


def test_black_channel_leaves_other_channels_alone(make_bracket_images, computer):
    images = make_bracket_images(TIMES, gamma=2.2, height=16, width=16)
    reference = ResponseEstimator(ExposureBracket(images, TIMES), computer).estimate_camera_response(15)

    blanked = [image.copy() for image in images]
    for image in blanked:
        image[..., 2] = 0
    response = ResponseEstimator(ExposureBracket(blanked, TIMES), computer).estimate_camera_response(15)

    np.testing.assert_allclose(response[:, :2], reference[:, :2], rtol=1e-5, atol=1e-6)
    # Nothing was observed in blue, so it keeps the normalised seed ramp
    np.testing.assert_allclose(response[:, 2], linear_response()[:, 2], atol=1e-4)


@pytest.mark.parametrize("kind", ["saturated", "black_channel"])
def test_processor_handles_degenerate_bracket(make_bracket_images, computer, kind):
    processor = HDRProcessor(computer, HDRSettings(iterations=5))
    hdr = processor.process(_degenerate(kind, make_bracket_images), TIMES)

    assert np.all(np.isfinite(hdr.pixels))
    assert np.all(hdr.pixels >= 0)
    assert hdr.dynamic_range is not None



def test_runs_are_independent(small_bracket):
    estimator = ResponseEstimator(small_bracket, NumpyComputer())
    first = estimator.estimate_camera_response(5)
    kept = first.copy()
    second = estimator.estimate_camera_response(5)

    np.testing.assert_array_equal(first, kept)
    np.testing.assert_array_equal(first, second)
    assert first is not second
    with pytest.raises(ValueError):
        first[0, 0] = 1.0


def test_settings_drive_the_defaults(small_bracket):
    settings = HDRSettings(iterations=3, training_weight=6.0, control_point_count=8, median_window=5)
    estimator = ResponseEstimator(small_bracket, NumpyComputer(), settings)
    params = estimator.estimate_camera_parameters()

    assert len(estimator.iteration_deltas) == 3
    assert params.training_weight == 6.0
    np.testing.assert_allclose(params.response[255], 1.0, rtol=1e-6)


@pytest.mark.parametrize("iterations", [0, -1, 2.5, True])
def test_iterations_must_be_positive_integer(small_bracket, iterations):
    estimator = ResponseEstimator(small_bracket, NumpyComputer())
    with pytest.raises(InvalidConfiguration):
        estimator.estimate_camera_response(iterations)


class FailingAccumulate(NumpyComputer):
    def accumulate(self, *args, **kwargs):
        raise RuntimeError("kernel fault")


class OutOfMemory(NumpyComputer):
    def count_cardinality(self, images):
        raise MemoryError("no room for histograms")


def test_stage_failure_is_typed(small_bracket):
    estimator = ResponseEstimator(small_bracket, FailingAccumulate())
    with pytest.raises(ComputeDispatchFailure) as info:
        estimator.estimate_camera_response(3)
    assert info.value.stage == "accumulate"
    assert isinstance(info.value.__cause__, RuntimeError)
    assert estimator.state is EstimationState.ACCUMULATING


def test_allocation_failure_is_typed(small_bracket):
    estimator = ResponseEstimator(small_bracket, OutOfMemory())
    with pytest.raises(ResourceAllocationFailure):
        estimator.estimate_camera_response(3)


def test_failed_run_does_not_break_the_next(small_bracket):
    computer = FailingAccumulate()
    estimator = ResponseEstimator(small_bracket, computer)
    with pytest.raises(ComputeDispatchFailure):
        estimator.estimate_camera_response(2)

    estimator.computer = NumpyComputer()
    response = estimator.estimate_camera_response(2)
    np.testing.assert_allclose(response[255], 1.0, rtol=1e-6)
