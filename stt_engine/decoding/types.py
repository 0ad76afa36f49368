"""Data types shared by the decode orchestrator and its strategies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from stt_engine.config.default.model import DEFAULT_MAX_TOKENS
from stt_engine.errors import ErrorCode, STTError

# Special tokens of the multilingual Whisper vocabulary.
EOT = 50257
SOT = 50258
TRANSLATE = 50358
TRANSCRIBE = 50359
START_OF_PREV = 50361
NO_TIMESTAMPS = 50363
SPECIAL_TOKEN_START = EOT


def _freeze(array: Any) -> np.ndarray:
    frozen = np.ascontiguousarray(array, dtype=np.float32)
    if frozen is array:
        frozen = frozen.copy()
    frozen.setflags(write=False)
    return frozen


@dataclass(frozen=True)
class KVCache:
    """Immutable per-layer key/value snapshot.

    Each entry has shape ``[1, heads, seq_len, head_dim]``. Arrays are
    read-only so a snapshot can be shared by reference without a sibling
    beam ever mutating it.
    """

    keys: Tuple[np.ndarray, ...]
    values: Tuple[np.ndarray, ...]
    seq_len: int = 0

    @classmethod
    def empty(cls, num_layers: int, num_heads: int, head_dim: int) -> "KVCache":
        blank = np.zeros((1, num_heads, 0, head_dim), dtype=np.float32)
        blank.setflags(write=False)
        return cls(
            keys=tuple(blank for _ in range(num_layers)),
            values=tuple(blank for _ in range(num_layers)),
            seq_len=0,
        )

    @classmethod
    def from_layers(
        cls, keys: Sequence[Any], values: Sequence[Any]
    ) -> "KVCache":
        if len(keys) != len(values):
            raise ValueError("keys and values must cover the same layers")
        frozen_keys = tuple(_freeze(k) for k in keys)
        frozen_values = tuple(_freeze(v) for v in values)
        seq_len = frozen_keys[0].shape[2] if frozen_keys else 0
        return cls(keys=frozen_keys, values=frozen_values, seq_len=int(seq_len))

    @property
    def num_layers(self) -> int:
        return len(self.keys)


@dataclass(frozen=True)
class StepResult:
    """Output of one decoder step."""

    logits: np.ndarray
    encoder_kv: KVCache
    decoder_kv: KVCache


@dataclass(frozen=True)
class DecodeResult:
    tokens: Tuple[int, ...]
    avg_logprob: float
    strategy: str = ""


@dataclass(frozen=True)
class Beam:
    """A partial hypothesis and the exact cache history needed to extend it."""

    tokens: Tuple[int, ...]
    score: float
    logits: np.ndarray
    decoder_kv: KVCache


@dataclass(frozen=True)
class CompletedBeam:
    tokens: Tuple[int, ...]
    score: float

    @property
    def normalized_score(self) -> float:
        return self.score / max(len(self.tokens), 1)


@dataclass(frozen=True)
class DecodeConfig:
    """Decode strategy selection: beam width 1 means greedy."""

    beam_width: int = 3
    repetition_penalty: float = 1.2
    max_tokens: int = DEFAULT_MAX_TOKENS

    DEFAULT: ClassVar["DecodeConfig"]
    GREEDY: ClassVar["DecodeConfig"]
    GREEDY_WITH_PENALTY: ClassVar["DecodeConfig"]

    def __post_init__(self) -> None:
        if int(self.beam_width) < 1:
            raise STTError(
                ErrorCode.DECODE_OPTION_INVALID,
                f"beam_width must be >= 1, got {self.beam_width}",
            )
        if float(self.repetition_penalty) < 1.0:
            raise STTError(
                ErrorCode.DECODE_OPTION_INVALID,
                f"repetition_penalty must be >= 1.0, got {self.repetition_penalty}",
            )
        if int(self.max_tokens) < 1:
            raise STTError(
                ErrorCode.DECODE_OPTION_INVALID,
                f"max_tokens must be >= 1, got {self.max_tokens}",
            )

    @property
    def label(self) -> str:
        if self.beam_width == 1 and self.repetition_penalty == 1.0:
            return "greedy"
        if self.beam_width == 1:
            return "greedy+rep"
        return f"beam{self.beam_width}"

    @classmethod
    def from_options(
        cls, options: Mapping[str, Any], max_tokens: Optional[int] = None
    ) -> "DecodeConfig":
        """Build a config from a decode profile dict."""
        try:
            kwargs: Dict[str, Any] = {
                "beam_width": int(options.get("beam_size", 1)),
                "repetition_penalty": float(options.get("repetition_penalty", 1.0)),
            }
            limit = options.get("max_tokens", max_tokens)
            if limit is not None:
                kwargs["max_tokens"] = int(limit)
        except (TypeError, ValueError) as exc:
            raise STTError(ErrorCode.DECODE_OPTION_INVALID, str(exc)) from exc
        return cls(**kwargs)


DecodeConfig.DEFAULT = DecodeConfig()
DecodeConfig.GREEDY = DecodeConfig(beam_width=1, repetition_penalty=1.0)
DecodeConfig.GREEDY_WITH_PENALTY = DecodeConfig(beam_width=1, repetition_penalty=1.2)


@dataclass
class ForcedPrefix:
    """Token prefix fed before free-running generation."""

    tokens: Tuple[int, ...]
    prompt_tokens: Tuple[int, ...] = field(default_factory=tuple)


__all__ = [
    "EOT",
    "SOT",
    "TRANSLATE",
    "TRANSCRIBE",
    "START_OF_PREV",
    "NO_TIMESTAMPS",
    "SPECIAL_TOKEN_START",
    "Beam",
    "CompletedBeam",
    "DecodeConfig",
    "DecodeResult",
    "ForcedPrefix",
    "KVCache",
    "StepResult",
]
