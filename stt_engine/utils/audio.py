from pathlib import Path
from typing import Union

import librosa
import numpy as np
import soundfile as sf

WHISPER_SAMPLE_RATE = 16000


def pcm16_to_float32(pcm_bytes):
    """PCM16 bytes → float32 numpy array"""
    return np.frombuffer(pcm_bytes, dtype=np.int16).astype(np.float32) / 32768.0


def ensure_16k(audio, src_rate):
    """Resample input audio to Whisper's required 16 kHz when needed."""
    if src_rate == WHISPER_SAMPLE_RATE:
        return audio
    return librosa.resample(audio, orig_sr=src_rate, target_sr=WHISPER_SAMPLE_RATE)


def pad_or_trim(samples: np.ndarray, length: int) -> np.ndarray:
    """Zero-pad or truncate ``samples`` to exactly ``length`` entries."""
    samples = np.asarray(samples, dtype=np.float32)
    if samples.shape[0] >= length:
        return samples[:length].copy()
    padded = np.zeros(length, dtype=np.float32)
    padded[: samples.shape[0]] = samples
    return padded


def duration_seconds(num_samples: int, sample_rate: int = WHISPER_SAMPLE_RATE) -> float:
    if sample_rate <= 0:
        return 0.0
    return num_samples / float(sample_rate)


def read_wav(path: Union[str, Path]) -> np.ndarray:
    """Load an audio file as mono float32 samples at 16 kHz."""
    data, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
    mono = data.mean(axis=1) if data.shape[1] > 1 else data[:, 0]
    return np.ascontiguousarray(ensure_16k(mono, sample_rate), dtype=np.float32)


def write_wav(path: Union[str, Path], samples: np.ndarray) -> None:
    """Write float samples in [-1, 1] as 16 kHz mono PCM16."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    sf.write(str(path), clipped, WHISPER_SAMPLE_RATE, subtype="PCM_16")
