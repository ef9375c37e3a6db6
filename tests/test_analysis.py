import numpy as np
import pytest

from radiance_stack import DynamicRangeAnalyzer, HDRRadianceImage, InvalidConfiguration
from radiance_stack.analysis import clip_threshold


def _radiance(seed=8):
    rng = np.random.default_rng(seed)
    pixels = rng.lognormal(mean=0.0, sigma=1.0, size=(32, 32, 3)).astype(np.float32)
    pixels[0, 0] = [500.0, 400.0, 300.0]
    return pixels


def test_extremes_bound_every_pixel(computer):
    pixels = _radiance()
    stats = DynamicRangeAnalyzer(computer).analyze(pixels)
    flat = pixels.reshape(-1, 3)
    assert np.all(stats.minimum <= flat.min(axis=0))
    assert np.all(stats.maximum >= flat.max(axis=0))
    np.testing.assert_allclose(stats.maximum, [500.0, 400.0, 300.0])


def test_clip_threshold_inside_range(computer):
    pixels = _radiance()
    stats = DynamicRangeAnalyzer(computer, bins=256, percentile=99.0).analyze(pixels)
    assert np.all(stats.clip_threshold >= stats.minimum)
    assert np.all(stats.clip_threshold <= stats.maximum)
    # The single hot pixel sits above the threshold
    assert np.all(stats.clip_threshold < stats.maximum)
    assert stats.histogram.shape == (256, 3)


def test_analysis_attaches_to_image(computer):
    image = HDRRadianceImage(_radiance())
    stats = DynamicRangeAnalyzer(computer).analyze(image)
    assert image.dynamic_range is stats
    # Pixels are left untouched
    assert image.pixels[0, 0, 0] == 500.0


def test_constant_image(computer):
    pixels = np.full((8, 8, 3), 3.25, dtype=np.float32)
    stats = DynamicRangeAnalyzer(computer).analyze(pixels)
    np.testing.assert_allclose(stats.minimum, 3.25)
    np.testing.assert_allclose(stats.maximum, 3.25)
    np.testing.assert_allclose(stats.clip_threshold, 3.25)


def test_clip_helper_returns_copy(computer):
    pixels = _radiance()
    stats = DynamicRangeAnalyzer(computer).analyze(pixels)
    clipped = stats.clip(pixels)
    assert np.all(clipped <= stats.clip_threshold)
    assert pixels[0, 0, 0] == 500.0


def test_clip_threshold_walk():
    histogram = np.array([90, 5, 3, 2])
    # 1% of 100 is exceeded in the top bucket already
    assert clip_threshold(histogram, 0.0, 4.0, 99.0) == pytest.approx(4.0)
    # 5% allowed: 2, then 5, then 10 > 5 at bucket 1
    assert clip_threshold(histogram, 0.0, 4.0, 95.0) == pytest.approx(2.0)
    assert clip_threshold(histogram, 1.0, 1.0, 99.0) == 1.0


def test_analyzer_validation(numpy_computer):
    with pytest.raises(InvalidConfiguration):
        DynamicRangeAnalyzer(numpy_computer, bins=1)
    with pytest.raises(InvalidConfiguration):
        DynamicRangeAnalyzer(numpy_computer, percentile=0.0)
