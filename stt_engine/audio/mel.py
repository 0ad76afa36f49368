"""Log-mel spectrogram matching Whisper's reference preprocessing.

Pipeline: 30 s of 16 kHz audio -> reflect pad -> Hann-windowed STFT ->
power spectrum -> 80-band Slaney mel filterbank -> log10 with Whisper's
dynamic-range clamp and rescale. The output is an ``(80, 3000)`` float32
grid, row-major, ready to be reshaped to the encoder's ``[1, 80, 3000]``
input.
"""

from __future__ import annotations

import threading
from functools import lru_cache
from typing import Optional

import librosa
import numpy as np

from stt_engine.errors import ErrorCode, STTError

SAMPLE_RATE = 16000
N_FFT = 400
HOP_LENGTH = 160
N_MELS = 80
CHUNK_LENGTH = 30
N_SAMPLES = CHUNK_LENGTH * SAMPLE_RATE  # 480000
N_FRAMES = N_SAMPLES // HOP_LENGTH  # 3000
FREQ_BINS = N_FFT // 2 + 1  # 201
F_MAX = 8000.0

LOG_FLOOR = 1e-10
DYNAMIC_RANGE = 8.0

# Frames per STFT block; cancellation is checked between blocks.
FRAMES_PER_BLOCK = 100


@lru_cache(maxsize=None)
def hann_window() -> np.ndarray:
    """Periodic Hann window, i.e. ``np.hanning(N_FFT + 1)[:-1]``."""
    return librosa.filters.get_window("hann", N_FFT, fftbins=True).astype(np.float64)


@lru_cache(maxsize=None)
def mel_filters() -> np.ndarray:
    """``(N_MELS, FREQ_BINS)`` triangular filters on the Slaney mel scale.

    Slaney scale: linear below 1 kHz, log-step ``ln(6.4) / 27`` above, and
    each filter scaled by ``2 / (right_hz - left_hz)``.
    """
    filters = librosa.filters.mel(
        sr=SAMPLE_RATE,
        n_fft=N_FFT,
        n_mels=N_MELS,
        fmin=0.0,
        fmax=F_MAX,
        htk=False,
        norm="slaney",
        dtype=np.float64,
    )
    filters.setflags(write=False)
    return filters


def reflect_pad(audio: np.ndarray, pad: int = N_FFT // 2) -> np.ndarray:
    """Mirror ``pad`` samples at each edge, excluding the edge sample itself."""
    return np.pad(audio, (pad, pad), mode="reflect")


def power_spectrum(frames: np.ndarray) -> np.ndarray:
    """Power at the positive DFT bins for each row of ``frames``."""
    spectrum = np.fft.rfft(frames * hann_window(), n=N_FFT, axis=-1)
    return spectrum.real**2 + spectrum.imag**2


def log_scale(mel: np.ndarray) -> np.ndarray:
    log_spec = np.log10(np.maximum(mel, LOG_FLOOR))
    log_spec = np.maximum(log_spec, log_spec.max() - DYNAMIC_RANGE)
    return (log_spec + 4.0) / 4.0


def compute(
    audio: np.ndarray, cancel_event: Optional[threading.Event] = None
) -> np.ndarray:
    """Compute the ``(80, 3000)`` log-mel grid of exactly 30 s of audio.

    Raises ``STTError(AUDIO_LENGTH_INVALID)`` when ``audio`` does not hold
    exactly ``N_SAMPLES`` samples; callers pad or trim beforehand.
    """
    samples = np.asarray(audio, dtype=np.float64)
    if samples.ndim != 1 or samples.shape[0] != N_SAMPLES:
        raise STTError(
            ErrorCode.AUDIO_LENGTH_INVALID,
            f"expected {N_SAMPLES} samples, got {samples.size}",
        )

    padded = reflect_pad(samples)
    frames = np.lib.stride_tricks.sliding_window_view(padded, N_FFT)[::HOP_LENGTH]
    frames = frames[:N_FRAMES]
    filters = mel_filters()

    mel = np.empty((N_MELS, N_FRAMES), dtype=np.float64)
    for start in range(0, N_FRAMES, FRAMES_PER_BLOCK):
        if cancel_event is not None and cancel_event.is_set():
            raise STTError(ErrorCode.DECODE_CANCELLED, "cancelled during feature extraction")
        stop = min(start + FRAMES_PER_BLOCK, N_FRAMES)
        mel[:, start:stop] = filters @ power_spectrum(frames[start:stop]).T

    return log_scale(mel).astype(np.float32)


__all__ = [
    "SAMPLE_RATE",
    "N_FFT",
    "HOP_LENGTH",
    "N_MELS",
    "N_SAMPLES",
    "N_FRAMES",
    "FREQ_BINS",
    "compute",
    "hann_window",
    "log_scale",
    "mel_filters",
    "power_spectrum",
    "reflect_pad",
]
