"""Owned transcription session: init -> transcribe* -> close."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, NamedTuple, Optional, Union

import numpy as np

from stt_engine.audio import mel
from stt_engine.config.default.model import DEFAULT_INTRA_OP_THREADS, MODEL_SPECS, ModelSpec
from stt_engine.decoding.orchestrator import DecodeOrchestrator
from stt_engine.decoding.types import DecodeConfig, DecodeResult
from stt_engine.errors import ErrorCode, STTError
from stt_engine.model.backends import InferenceBackend, get_backend
from stt_engine.tokenizer.vocab import VocabularyCodec
from stt_engine.utils.audio import pad_or_trim

LOGGER = logging.getLogger("stt_engine.transcriber")

BackendLoader = Callable[[], InferenceBackend]


def resolve_model_spec(name: str) -> ModelSpec:
    spec = MODEL_SPECS.get((name or "").lower())
    if spec is None:
        raise STTError(
            ErrorCode.MODEL_UNKNOWN,
            f"unknown model {name!r}; expected one of {sorted(MODEL_SPECS)}",
        )
    return spec


class Transcription(NamedTuple):
    """Text plus the decode result it was built from."""

    text: str
    result: DecodeResult


class Transcriber:
    """Wraps one inference backend and vocabulary behind a single lock.

    The backend handle is not reentrant: at most one transcription runs at a
    time per instance. Calling :meth:`transcribe` before :meth:`init` or
    after :meth:`close` fails immediately.
    """

    def __init__(self, codec: VocabularyCodec, backend_loader: BackendLoader) -> None:
        self.codec = codec
        self._backend_loader = backend_loader
        self._lock = threading.Lock()
        self._backend: Optional[InferenceBackend] = None
        self._orchestrator: Optional[DecodeOrchestrator] = None

    @classmethod
    def from_paths(
        cls,
        model_dir: Union[str, Path],
        vocab_path: Union[str, Path],
        model_name: str,
        backend: str = "onnx",
        intra_op_threads: int = DEFAULT_INTRA_OP_THREADS,
    ) -> "Transcriber":
        spec = resolve_model_spec(model_name)
        codec = VocabularyCodec.from_file(vocab_path)
        backend_cls = get_backend(backend)

        def load() -> InferenceBackend:
            return backend_cls(model_dir, spec, intra_op_threads=intra_op_threads)

        return cls(codec, load)

    @property
    def is_initialized(self) -> bool:
        return self._backend is not None

    def init(self) -> None:
        with self._lock:
            if self._backend is not None:
                return
            backend = self._backend_loader()
            self._backend = backend
            self._orchestrator = DecodeOrchestrator(backend, self.codec)
            LOGGER.info("Transcriber initialized model=%s", backend.model_spec.name)

    def transcribe(
        self,
        samples: np.ndarray,
        language_token_id: int,
        initial_prompt: str = "",
        config: DecodeConfig = DecodeConfig.DEFAULT,
        cancel_event: Optional[threading.Event] = None,
    ) -> Transcription:
        """Transcribe 16 kHz mono float samples in [-1, 1].

        Audio longer than 30 s is truncated; shorter audio is zero-padded.
        An empty string means no speech was recognized.
        """
        if self._backend is None:
            raise STTError(
                ErrorCode.MODEL_NOT_INITIALIZED, "call init() before transcribe()"
            )
        with self._lock:
            backend = self._backend
            orchestrator = self._orchestrator
            if backend is None or orchestrator is None:
                raise STTError(
                    ErrorCode.MODEL_NOT_INITIALIZED, "transcriber was closed"
                )
            samples = np.asarray(samples, dtype=np.float32)
            LOGGER.info(
                "Transcribing %d samples, lang token=%d, decode=%s",
                samples.shape[0],
                language_token_id,
                config.label,
            )
            padded = pad_or_trim(samples, mel.N_SAMPLES)
            features = mel.compute(padded, cancel_event=cancel_event)
            try:
                encoder_out = backend.run_encoder(
                    features.reshape(1, mel.N_MELS, mel.N_FRAMES)
                )
            except STTError:
                raise
            except MemoryError as exc:
                raise STTError(
                    ErrorCode.DECODE_RESOURCE_EXHAUSTED, "encoder run ran out of memory"
                ) from exc
            except Exception as exc:
                raise STTError(
                    ErrorCode.INFERENCE_FAILED, f"encoder run failed: {exc}"
                ) from exc
            LOGGER.debug("Encoder output shape=%s", tuple(encoder_out.shape))

            result = orchestrator.run(
                encoder_out,
                language_token_id,
                initial_prompt=initial_prompt,
                config=config,
                cancel_event=cancel_event,
            )
            text = self.codec.decode(result.tokens)
            return Transcription(text, result)

    def close(self) -> None:
        with self._lock:
            if self._backend is not None:
                self._backend.close()
            self._backend = None
            self._orchestrator = None


__all__ = ["Transcriber", "Transcription", "resolve_model_spec"]
