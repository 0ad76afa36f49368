"""Backend interface for the neural-network inference provider."""

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

from stt_engine.config.default.model import ModelSpec
from stt_engine.decoding.types import KVCache


@dataclass(frozen=True)
class DecoderStepOutput:
    """Raw outputs of one decoder call.

    ``encoder_kv`` is only populated when the call computed the
    cross-attention cache, i.e. when ``use_cache`` was False.
    """

    logits: np.ndarray
    decoder_kv: KVCache
    encoder_kv: Optional[KVCache] = None


class InferenceBackend(Protocol):
    """Given named input tensors, return named output tensors."""

    model_spec: ModelSpec

    def run_encoder(self, mel: np.ndarray) -> np.ndarray:
        """Map a ``[1, 80, 3000]`` mel grid to ``[1, seq, d_model]`` hidden states."""
        raise NotImplementedError

    def run_decoder_step(
        self,
        token_id: int,
        encoder_hidden_states: np.ndarray,
        encoder_kv: KVCache,
        decoder_kv: KVCache,
        use_cache: bool,
    ) -> DecoderStepOutput:
        """Run the decoder for a single ``[1, 1]`` input id."""
        raise NotImplementedError

    def close(self) -> None:
        """Release engine sessions."""
        raise NotImplementedError
