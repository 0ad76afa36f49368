"""Signal conditioning applied to recorded audio before feature extraction."""

import numpy as np
from scipy import signal

# Single-pole high-pass coefficient, roughly an 80 Hz cutoff at 16 kHz.
HIGH_PASS_ALPHA = 0.969
SILENCE_PEAK = 0.001
TARGET_PEAK = 0.9


def high_pass_filter(samples: np.ndarray, alpha: float = HIGH_PASS_ALPHA) -> np.ndarray:
    """Remove DC offset and low rumble.

    ``y[i] = alpha * (y[i-1] + x[i] - x[i-1])`` with the filter at rest, so
    ``y[0] == x[0]``.
    """
    x = np.asarray(samples, dtype=np.float32)
    if x.size == 0:
        return np.zeros(0, dtype=np.float32)
    zi = np.array([(1.0 - alpha) * float(x[0])])
    y, _ = signal.lfilter([alpha, -alpha], [1.0, -alpha], x.astype(np.float64), zi=zi)
    out = y.astype(np.float32)
    out[0] = x[0]
    return out


def normalize_gain(samples: np.ndarray) -> np.ndarray:
    """Scale so the peak absolute amplitude is 0.9; near-silence is left alone."""
    x = np.asarray(samples, dtype=np.float32)
    if x.size == 0:
        return x
    peak = float(np.max(np.abs(x)))
    if peak < SILENCE_PEAK:
        return x
    return (x * np.float32(TARGET_PEAK / peak)).astype(np.float32)


def preprocess(samples: np.ndarray) -> np.ndarray:
    return normalize_gain(high_pass_filter(samples))


__all__ = ["high_pass_filter", "normalize_gain", "preprocess"]
