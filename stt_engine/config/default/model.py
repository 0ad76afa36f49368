"""Default values and helpers for model-related configuration."""

from dataclasses import dataclass
from typing import Any, Dict

DEFAULT_MODEL_NAME = "base"
DEFAULT_MODEL_DIR = "models/whisper-base"
DEFAULT_VOCAB_PATH = "models/vocab.json"
DEFAULT_MODEL_BACKEND = "onnx"
DEFAULT_INTRA_OP_THREADS = 4
DEFAULT_LANGUAGE = "en"
DEFAULT_DECODE_PROFILE_NAME = "beam"
DEFAULT_MAX_TOKENS = 224

ENCODER_FILE = "encoder_model.onnx"
DECODER_FILE = "decoder_model_merged.onnx"


@dataclass(frozen=True)
class ModelSpec:
    """Tensor geometry of a Whisper checkpoint; must match the loaded weights."""

    name: str
    num_layers: int
    num_heads: int
    d_model: int
    head_dim: int = 64
    n_text_ctx: int = 448
    vocab_size: int = 51865


MODEL_SPECS: Dict[str, ModelSpec] = {
    "tiny": ModelSpec("tiny", num_layers=4, num_heads=6, d_model=384),
    "tiny-pl": ModelSpec("tiny-pl", num_layers=4, num_heads=6, d_model=384),
    "base": ModelSpec("base", num_layers=6, num_heads=8, d_model=512),
    "small": ModelSpec("small", num_layers=12, num_heads=12, d_model=768),
}

DECODE_PROFILES: Dict[str, Dict[str, Any]] = {
    "greedy": {"beam_size": 1, "repetition_penalty": 1.0},
    "greedy_penalty": {"beam_size": 1, "repetition_penalty": 1.2},
    "beam": {"beam_size": 3, "repetition_penalty": 1.2},
}


def default_decode_profiles() -> Dict[str, Dict[str, Any]]:
    """Return a fresh copy of the built-in decode profile map."""
    return {name: dict(options) for name, options in DECODE_PROFILES.items()}


ALLOWED_DECODE_OPTION_KEYS = {
    "beam_size",
    "repetition_penalty",
    "max_tokens",
}


MODEL_SECTION_MAP = {
    "name": "model",
    "model_dir": "model_dir",
    "vocab_path": "vocab_path",
    "backend": "backend",
    "intra_op_threads": "intra_op_threads",
    "language": "language",
    "default_decode_profile": "default_decode_profile",
}


__all__ = [
    "DEFAULT_MODEL_NAME",
    "DEFAULT_MODEL_DIR",
    "DEFAULT_VOCAB_PATH",
    "DEFAULT_MODEL_BACKEND",
    "DEFAULT_INTRA_OP_THREADS",
    "DEFAULT_LANGUAGE",
    "DEFAULT_DECODE_PROFILE_NAME",
    "DEFAULT_MAX_TOKENS",
    "ENCODER_FILE",
    "DECODER_FILE",
    "ModelSpec",
    "MODEL_SPECS",
    "DECODE_PROFILES",
    "ALLOWED_DECODE_OPTION_KEYS",
    "default_decode_profiles",
    "MODEL_SECTION_MAP",
]
