import numpy as np
import pytest
import torch

from radiance_stack import (
    CameraParameters,
    ExposureCountMismatch,
    HDRProcessor,
    HDRSettings,
    InvalidBracketSize,
    MissingExposureMetadata,
    NumpyComputer,
    default_computer,
)

TIMES = [1 / 60, 1 / 15, 1 / 4]


class RecordingComputer(NumpyComputer):
    """Records every stage dispatched to it"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.stages = []

    def dispatch(self, stage, kernel, *args, **kwargs):
        self.stages.append(stage)
        return super().dispatch(stage, kernel, *args, **kwargs)


def test_process_with_exif_metadata(make_bracket_images):
    images = make_bracket_images(TIMES, gamma=2.2, height=16, width=16)
    metadata = [{"{Exif}": {"ExposureTime": t}, "Make": "Test"} for t in TIMES]
    processor = HDRProcessor(NumpyComputer(), HDRSettings(iterations=5))
    hdr = processor.process(images, metadata=metadata)

    assert hdr.pixels.shape == (16, 16, 3)
    assert np.all(np.isfinite(hdr.pixels))
    assert np.all(hdr.pixels >= 0)
    assert hdr.metadata["Make"] == "Test"
    assert hdr.dynamic_range is not None
    assert tuple(hdr.to_tensor().shape) == (1, 16, 16, 3)


def test_process_estimates_when_no_parameters(make_bracket_images):
    computer = RecordingComputer()
    processor = HDRProcessor(computer, HDRSettings(iterations=2))
    processor.process(make_bracket_images(TIMES, height=16, width=16), TIMES)

    assert computer.stages.count("accumulate") == 2
    assert computer.stages.index("smooth_response") < computer.stages.index("merge")
    assert computer.stages[-2:] == ["min_max", "histogram"]


def test_process_with_known_parameters_skips_estimation(make_bracket_images):
    computer = RecordingComputer()
    processor = HDRProcessor(computer)
    hdr = processor.process(make_bracket_images(TIMES, height=8, width=8), TIMES,
                            camera_parameters=CameraParameters.linear(), analyze=False)

    assert computer.stages == ["load_bracket", "merge"]
    assert hdr.dynamic_range is None


def test_process_accepts_tensors(make_bracket_images):
    images = [torch.from_numpy(img.astype(np.float32) / 255.0).unsqueeze(0)
              for img in make_bracket_images(TIMES, height=8, width=8)]
    processor = HDRProcessor(NumpyComputer(), HDRSettings(iterations=2))
    hdr = processor.process(images, TIMES)
    assert hdr.pixels.shape == (8, 8, 3)


def test_estimation_ignores_camera_shifts(make_bracket_images):
    images = make_bracket_images(TIMES, height=16, width=16)
    processor = HDRProcessor(NumpyComputer(), HDRSettings(iterations=3))
    shifted = processor.make_bracket(images, TIMES, camera_shifts=[(0, 0), (2, 0), (0, -3)])

    from_shifted = processor.estimate_response(shifted.with_camera_shifts(None))
    from_plain = processor.estimate_response(processor.make_bracket(images, TIMES))
    np.testing.assert_array_equal(from_shifted.response, from_plain.response)


@pytest.mark.parametrize("kwargs, error", [
    ({"images": 1, "times": [1.0]}, InvalidBracketSize),
    ({"images": 6, "times": [1.0] * 6}, InvalidBracketSize),
    ({"images": 3, "times": [1.0, 2.0]}, ExposureCountMismatch),
    ({"images": 2, "times": None}, MissingExposureMetadata),
])
def test_preconditions_fail_before_any_stage(kwargs, error):
    computer = RecordingComputer()
    images = [np.full((4, 4, 3), 100, dtype=np.uint8)] * kwargs["images"]
    with pytest.raises(error):
        HDRProcessor(computer).process(images, kwargs["times"])
    assert computer.stages == []


def test_bracket_size_follows_settings():
    processor = HDRProcessor(NumpyComputer(), HDRSettings(max_bracket_size=6))
    images = [np.full((4, 4, 3), 100, dtype=np.uint8)] * 6
    bracket = processor.make_bracket(images, [1.0, 2.0, 4.0, 8.0, 16.0, 32.0])
    assert len(bracket) == 6


def test_default_computer_matches_hardware():
    computer = default_computer(HDRSettings(block_size=8))
    assert computer.block_size == 8
    expected = "torch" if torch.cuda.is_available() else "numpy"
    assert computer.name == expected
