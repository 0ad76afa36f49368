"""ONNX Runtime backend for exported Whisper encoder/decoder graphs.

Expects the HuggingFace/Optimum export layout: ``encoder_model.onnx`` and a
merged ``decoder_model_merged.onnx`` whose ``use_cache_branch`` input selects
between the first (cache-building) and subsequent (cache-reusing) passes.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import onnxruntime as ort

from stt_engine.config.default.model import (
    DECODER_FILE,
    DEFAULT_INTRA_OP_THREADS,
    ENCODER_FILE,
    ModelSpec,
)
from stt_engine.decoding.types import KVCache
from stt_engine.errors import ErrorCode, STTError
from stt_engine.model.backends.base import DecoderStepOutput, InferenceBackend

LOGGER = logging.getLogger("stt_engine.model_backend")

ALLOCATION_FAILURE_MARKERS = ("failed to allocate", "bad_alloc", "bad allocation", "out of memory")


def _is_allocation_failure(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in ALLOCATION_FAILURE_MARKERS)


class OnnxWhisperBackend(InferenceBackend):
    """Backend wrapper for onnxruntime encoder + merged decoder sessions."""

    def __init__(
        self,
        model_dir: Union[str, Path],
        model_spec: ModelSpec,
        intra_op_threads: int = DEFAULT_INTRA_OP_THREADS,
        providers: Optional[List[str]] = None,
    ) -> None:
        self.model_spec = model_spec
        model_path = Path(model_dir).expanduser()
        encoder_path = model_path / ENCODER_FILE
        decoder_path = model_path / DECODER_FILE
        for path in (encoder_path, decoder_path):
            if not path.exists():
                raise STTError(ErrorCode.MODEL_LOAD_FAILED, f"model file not found: {path}")

        opts = ort.SessionOptions()
        opts.intra_op_num_threads = int(intra_op_threads)
        session_providers = providers or ["CPUExecutionProvider"]
        try:
            self._encoder: Optional[ort.InferenceSession] = ort.InferenceSession(
                str(encoder_path), sess_options=opts, providers=session_providers
            )
            self._decoder: Optional[ort.InferenceSession] = ort.InferenceSession(
                str(decoder_path), sess_options=opts, providers=session_providers
            )
        except Exception as exc:
            raise STTError(
                ErrorCode.MODEL_LOAD_FAILED, f"failed to create sessions from {model_path}: {exc}"
            ) from exc
        self._decoder_outputs = [out.name for out in self._decoder.get_outputs()]
        LOGGER.info(
            "onnx sessions loaded model=%s layers=%d heads=%d d_model=%d threads=%d",
            model_spec.name,
            model_spec.num_layers,
            model_spec.num_heads,
            model_spec.d_model,
            intra_op_threads,
        )

    def run_encoder(self, mel: np.ndarray) -> np.ndarray:
        session = self._encoder
        if session is None:
            raise STTError(
                ErrorCode.MODEL_NOT_INITIALIZED, "encoder session closed during transcription"
            )
        features = np.ascontiguousarray(mel, dtype=np.float32).reshape(1, 80, -1)
        try:
            (hidden,) = session.run(["last_hidden_state"], {"input_features": features})
        except Exception as exc:
            raise self._translate(exc, "encoder") from exc
        return hidden

    def run_decoder_step(
        self,
        token_id: int,
        encoder_hidden_states: np.ndarray,
        encoder_kv: KVCache,
        decoder_kv: KVCache,
        use_cache: bool,
    ) -> DecoderStepOutput:
        session = self._decoder
        if session is None:
            raise STTError(
                ErrorCode.MODEL_NOT_INITIALIZED, "decoder session closed during transcription"
            )
        feeds: Dict[str, np.ndarray] = {
            "input_ids": np.array([[token_id]], dtype=np.int64),
            "encoder_hidden_states": np.ascontiguousarray(
                encoder_hidden_states, dtype=np.float32
            ),
            "use_cache_branch": np.array([use_cache], dtype=np.bool_),
        }
        for layer in range(self.model_spec.num_layers):
            feeds[f"past_key_values.{layer}.decoder.key"] = decoder_kv.keys[layer]
            feeds[f"past_key_values.{layer}.decoder.value"] = decoder_kv.values[layer]
            feeds[f"past_key_values.{layer}.encoder.key"] = encoder_kv.keys[layer]
            feeds[f"past_key_values.{layer}.encoder.value"] = encoder_kv.values[layer]

        try:
            outputs = session.run(self._decoder_outputs, feeds)
        except Exception as exc:
            raise self._translate(exc, "decoder") from exc
        named = dict(zip(self._decoder_outputs, outputs))

        layers = range(self.model_spec.num_layers)
        present_decoder = KVCache.from_layers(
            [named[f"present.{i}.decoder.key"] for i in layers],
            [named[f"present.{i}.decoder.value"] for i in layers],
        )
        present_encoder = None
        if not use_cache:
            present_encoder = KVCache.from_layers(
                [named[f"present.{i}.encoder.key"] for i in layers],
                [named[f"present.{i}.encoder.value"] for i in layers],
            )
        return DecoderStepOutput(
            logits=named["logits"].reshape(-1),
            decoder_kv=present_decoder,
            encoder_kv=present_encoder,
        )

    def _translate(self, exc: Exception, stage: str) -> STTError:
        if _is_allocation_failure(exc):
            return STTError(
                ErrorCode.DECODE_RESOURCE_EXHAUSTED, f"{stage} allocation failed: {exc}"
            )
        return STTError(ErrorCode.INFERENCE_FAILED, f"{stage} run failed: {exc}")

    def close(self) -> None:
        self._encoder = None
        self._decoder = None
        LOGGER.info("onnx sessions released model=%s", self.model_spec.name)


__all__ = ["OnnxWhisperBackend"]
