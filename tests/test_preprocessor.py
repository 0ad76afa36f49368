import numpy as np
import pytest

from stt_engine.audio.preprocessor import (
    HIGH_PASS_ALPHA,
    high_pass_filter,
    normalize_gain,
    preprocess,
)


def test_high_pass_handles_empty_input():
    out = high_pass_filter(np.zeros(0, dtype=np.float32))
    assert out.shape == (0,)
    assert out.dtype == np.float32


def test_high_pass_preserves_first_sample():
    x = np.array([0.25, 0.5, -0.5, 0.1], dtype=np.float32)
    out = high_pass_filter(x)
    assert out[0] == pytest.approx(0.25)


def test_high_pass_matches_recurrence():
    rng = np.random.default_rng(1)
    x = rng.uniform(-1, 1, 64).astype(np.float32)
    expected = np.zeros_like(x)
    expected[0] = x[0]
    for i in range(1, len(x)):
        expected[i] = HIGH_PASS_ALPHA * (expected[i - 1] + x[i] - x[i - 1])

    np.testing.assert_allclose(high_pass_filter(x), expected, atol=1e-5)


def test_high_pass_removes_dc_offset():
    out = high_pass_filter(np.full(16000, 0.5, dtype=np.float32))
    assert abs(float(out[-1])) < 1e-3


def test_normalize_keeps_all_zero_input_zero():
    out = normalize_gain(np.zeros(256, dtype=np.float32))
    assert out.shape == (256,)
    assert not np.any(out)
    assert np.all(np.isfinite(out))


def test_normalize_leaves_near_silence_untouched():
    x = np.full(100, 0.0005, dtype=np.float32)
    np.testing.assert_array_equal(normalize_gain(x), x)


@pytest.mark.parametrize("peak", [0.2, -0.4, 1.5])
def test_normalize_scales_peak_to_target(peak):
    x = np.array([0.0, peak / 2, peak, -peak / 4], dtype=np.float32)
    out = normalize_gain(x)
    assert float(np.max(np.abs(out))) == pytest.approx(0.9, abs=1e-6)
    assert np.sign(out[2]) == np.sign(peak)


def test_preprocess_applies_filter_then_gain():
    t = np.arange(16000) / 16000.0
    x = (0.05 * np.sin(2 * np.pi * 440 * t) + 0.2).astype(np.float32)
    out = preprocess(x)
    assert out.dtype == np.float32
    assert float(np.max(np.abs(out))) == pytest.approx(0.9, abs=1e-6)
