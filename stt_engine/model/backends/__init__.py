"""Backend registry for inference provider implementations."""

from typing import Callable

from stt_engine.errors import ErrorCode, STTError
from stt_engine.model.backends.base import DecoderStepOutput, InferenceBackend

BackendFactory = Callable[..., InferenceBackend]


def get_backend(name: str) -> BackendFactory:
    """Resolve a backend implementation by name."""
    normalized = (name or "onnx").lower()
    if normalized in {"onnx", "onnxruntime", "ort"}:
        try:
            from stt_engine.model.backends.onnx_runtime import OnnxWhisperBackend
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise STTError(
                ErrorCode.MODEL_LOAD_FAILED,
                "onnx backend requires the onnxruntime package. "
                "Install with: pip install onnxruntime",
            ) from exc

        return OnnxWhisperBackend
    raise STTError(ErrorCode.MODEL_LOAD_FAILED, f"unknown model backend: {name}")


__all__ = ["DecoderStepOutput", "InferenceBackend", "get_backend"]
