import logging
import threading
import time
import uuid
from concurrent import futures
from typing import Dict, NamedTuple, Optional, Tuple

import numpy as np

from stt_engine.audio.preprocessor import preprocess
from stt_engine.decoding.types import DecodeConfig
from stt_engine.errors import ErrorCode, STTError
from stt_engine.model.transcriber import Transcriber
from stt_engine.utils.audio import (
    WHISPER_SAMPLE_RATE,
    duration_seconds,
    ensure_16k,
    write_wav,
)
from stt_engine.utils.logger import TRANSCRIPT_LOGGER, clear_request_id, set_request_id

LOGGER = logging.getLogger("stt_engine.model_worker")


class TranscriptionResult(NamedTuple):
    text: str
    tokens: Tuple[int, ...]
    avg_logprob: float
    strategy: str
    latency_sec: float
    audio_duration: float
    rtf: float
    queue_wait_sec: float
    request_id: str


class TranscriptionWorker:
    """Serializes transcriptions for one Transcriber on a single-thread executor."""

    def __init__(
        self,
        transcriber: Transcriber,
        language_token_id: int,
        decode_config: DecodeConfig = DecodeConfig.DEFAULT,
        initial_prompt: str = "",
        preprocess_audio: bool = True,
        log_metrics: bool = True,
        save_last_recording: Optional[str] = None,
    ):
        self.transcriber = transcriber
        self.language_token_id = language_token_id
        self.decode_config = decode_config
        self.initial_prompt = initial_prompt
        self.preprocess_audio = preprocess_audio
        self.log_metrics = log_metrics
        self.save_last_recording = save_last_recording
        self.executor = futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="stt-engine"
        )
        self._closed = False
        self._active_lock = threading.Lock()
        self._active_cond = threading.Condition(self._active_lock)
        self._active_tasks = 0
        self._cancel_lock = threading.Lock()
        self._cancel_events: Dict[futures.Future, threading.Event] = {}

    def _on_future_done(self, future: futures.Future) -> None:
        with self._cancel_lock:
            self._cancel_events.pop(future, None)
        with self._active_cond:
            if self._active_tasks > 0:
                self._active_tasks -= 1
            if self._active_tasks == 0:
                self._active_cond.notify_all()

    def submit(
        self,
        samples: np.ndarray,
        src_rate: int = WHISPER_SAMPLE_RATE,
        decode_config: Optional[DecodeConfig] = None,
        initial_prompt: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> futures.Future:
        """Queue float samples for transcription; resolves to a TranscriptionResult."""
        if self._closed:
            raise STTError(ErrorCode.WORKER_CLOSED)
        cancel_event = threading.Event()
        submitted_at = time.perf_counter()
        with self._active_cond:
            self._active_tasks += 1
        try:
            future = self.executor.submit(
                self._transcribe,
                np.array(samples, dtype=np.float32, copy=True),
                src_rate,
                decode_config or self.decode_config,
                self.initial_prompt if initial_prompt is None else initial_prompt,
                request_id or uuid.uuid4().hex[:12],
                submitted_at,
                cancel_event,
            )
        except RuntimeError as exc:
            with self._active_cond:
                self._active_tasks -= 1
            raise STTError(ErrorCode.WORKER_CLOSED, str(exc)) from exc
        with self._cancel_lock:
            self._cancel_events[future] = cancel_event
        future.add_done_callback(self._on_future_done)
        return future

    def request_cancel(self, future: futures.Future) -> bool:
        """Signal a queued or running transcription to stop at its next check."""
        with self._cancel_lock:
            event = self._cancel_events.get(future)
        if event is None:
            return False
        event.set()
        return True

    def _transcribe(
        self,
        samples: np.ndarray,
        src_rate: int,
        decode_config: DecodeConfig,
        initial_prompt: str,
        request_id: str,
        submitted_at: float,
        cancel_event: threading.Event,
    ) -> TranscriptionResult:
        """Run one transcription inside the worker thread."""
        start = time.perf_counter()
        queue_wait_sec = max(0.0, start - submitted_at)
        set_request_id(request_id)
        try:
            if cancel_event.is_set():
                raise STTError(ErrorCode.DECODE_CANCELLED, "cancelled before start")
            audio = ensure_16k(samples, src_rate)
            if self.save_last_recording:
                write_wav(self.save_last_recording, audio)
                LOGGER.debug("Saved last recording to %s", self.save_last_recording)
            if self.preprocess_audio:
                audio = preprocess(audio)
            transcription = self.transcriber.transcribe(
                audio,
                self.language_token_id,
                initial_prompt=initial_prompt,
                config=decode_config,
                cancel_event=cancel_event,
            )
            elapsed = time.perf_counter() - start
            audio_duration = duration_seconds(len(audio))
            rtf = elapsed / audio_duration if audio_duration > 0 else -1.0
            if self.log_metrics:
                LOGGER.info(
                    "decode metrics audio=%.2fs elapsed=%.2fs real_time_factor=%.2f",
                    audio_duration,
                    elapsed,
                    rtf if rtf >= 0 else float("inf"),
                )
            if not transcription.text:
                LOGGER.info("No speech detected")
            TRANSCRIPT_LOGGER.info("transcript=%r", transcription.text)
            result = transcription.result
            return TranscriptionResult(
                text=transcription.text,
                tokens=result.tokens,
                avg_logprob=result.avg_logprob,
                strategy=result.strategy,
                latency_sec=elapsed,
                audio_duration=audio_duration,
                rtf=rtf,
                queue_wait_sec=queue_wait_sec,
                request_id=request_id,
            )
        finally:
            clear_request_id()

    def wait_for_idle(self, timeout_sec: Optional[float] = None) -> bool:
        with self._active_cond:
            if self._active_tasks == 0:
                return True
            return self._active_cond.wait_for(
                lambda: self._active_tasks == 0, timeout=timeout_sec
            )

    def close(self, timeout_sec: Optional[float] = None) -> None:
        """Stop accepting work, drain or cancel, then release the transcriber."""
        self._closed = True
        try:
            if timeout_sec is None:
                self.executor.shutdown(wait=True)
                return
            drained = self.wait_for_idle(timeout_sec)
            if drained:
                self.executor.shutdown(wait=True)
                return
            LOGGER.warning("Timed out waiting for transcriptions; cancelling pending work")
            with self._cancel_lock:
                events = list(self._cancel_events.values())
            for event in events:
                event.set()
            self.executor.shutdown(wait=True, cancel_futures=True)
        finally:
            self.transcriber.close()


__all__ = ["TranscriptionResult", "TranscriptionWorker"]
