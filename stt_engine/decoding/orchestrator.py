"""Forced-prefix feeding, KV-cache bookkeeping and strategy dispatch."""

from __future__ import annotations

import gc
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from stt_engine.decoding.strategies import GreedyStrategy, strategy_for
from stt_engine.decoding.types import (
    NO_TIMESTAMPS,
    SOT,
    START_OF_PREV,
    TRANSCRIBE,
    DecodeConfig,
    DecodeResult,
    ForcedPrefix,
    KVCache,
    StepResult,
)
from stt_engine.errors import ErrorCode, STTError
from stt_engine.model.backends.base import InferenceBackend
from stt_engine.tokenizer.vocab import VocabularyCodec
from stt_engine.utils.logger import TRACE_LEVEL_NUM

LOGGER = logging.getLogger("stt_engine.decoder")


@dataclass(frozen=True)
class SeededState:
    """Caches and logits after the forced prefix has been fed."""

    logits: np.ndarray
    encoder_kv: KVCache
    decoder_kv: KVCache


class _BoundStepper:
    """Per-step interface with the encoder context fixed after seeding."""

    def __init__(
        self,
        orchestrator: "DecodeOrchestrator",
        encoder_out: np.ndarray,
        encoder_kv: KVCache,
        cancel_event: Optional[threading.Event],
    ) -> None:
        self._orchestrator = orchestrator
        self._encoder_out = encoder_out
        self._encoder_kv = encoder_kv
        self._cancel_event = cancel_event
        self.steps = 0

    def advance(self, token: int, decoder_kv: KVCache) -> StepResult:
        self.steps += 1
        return self._orchestrator.decoder_step(
            token,
            self._encoder_kv,
            decoder_kv,
            self._encoder_out,
            first_step=False,
            cancel_event=self._cancel_event,
        )


class DecodeOrchestrator:
    """Turns encoder hidden states into a token sequence.

    The decoder is seeded with
    ``[START_OF_PREV, *prompt]`` (when a prompt is given) followed by
    ``[SOT, language, TRANSCRIBE, NO_TIMESTAMPS]``; the chosen strategy then
    generates until end-of-transcript or the token budget. A beam search that
    runs out of memory is retried greedily from a freshly fed prefix.
    """

    def __init__(self, backend: InferenceBackend, codec: VocabularyCodec) -> None:
        self.backend = backend
        self.codec = codec
        spec = backend.model_spec
        self.max_prompt_tokens = spec.n_text_ctx // 2

    def build_forced_prefix(
        self, language_token_id: int, initial_prompt: str = ""
    ) -> ForcedPrefix:
        prompt_tokens: Sequence[int] = ()
        if initial_prompt and initial_prompt.strip():
            encoded = self.codec.encode(initial_prompt)
            # Keep the most recent context when the prompt is too long.
            prompt_tokens = tuple(encoded[-self.max_prompt_tokens :]) if encoded else ()
            LOGGER.debug(
                "Initial prompt encoded to %d tokens (%d kept)", len(encoded), len(prompt_tokens)
            )
        tokens = (
            ((START_OF_PREV,) + tuple(prompt_tokens) if prompt_tokens else ())
            + (SOT, int(language_token_id), TRANSCRIBE, NO_TIMESTAMPS)
        )
        return ForcedPrefix(tokens=tokens, prompt_tokens=tuple(prompt_tokens))

    def decoder_step(
        self,
        token: int,
        encoder_kv: KVCache,
        decoder_kv: KVCache,
        encoder_out: np.ndarray,
        first_step: bool,
        cancel_event: Optional[threading.Event] = None,
    ) -> StepResult:
        """Feed one token.

        On the first step the cross-attention cache is built from empty; on
        every later step ``encoder_kv`` is passed through untouched.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise STTError(ErrorCode.DECODE_CANCELLED, "cancelled during decoding")
        spec = self.backend.model_spec
        if first_step:
            encoder_kv = KVCache.empty(spec.num_layers, spec.num_heads, spec.head_dim)
            decoder_kv = KVCache.empty(spec.num_layers, spec.num_heads, spec.head_dim)
        try:
            output = self.backend.run_decoder_step(
                int(token), encoder_out, encoder_kv, decoder_kv, use_cache=not first_step
            )
        except STTError:
            raise
        except MemoryError as exc:
            raise STTError(
                ErrorCode.DECODE_RESOURCE_EXHAUSTED, "decoder step ran out of memory"
            ) from exc
        except Exception as exc:
            raise STTError(ErrorCode.INFERENCE_FAILED, f"decoder step failed: {exc}") from exc

        if first_step:
            if output.encoder_kv is None:
                raise STTError(
                    ErrorCode.INFERENCE_FAILED, "first decoder step returned no encoder cache"
                )
            encoder_kv = output.encoder_kv
        if output.decoder_kv.seq_len != decoder_kv.seq_len + 1:
            raise STTError(
                ErrorCode.INFERENCE_FAILED,
                f"decoder cache length {output.decoder_kv.seq_len}, "
                f"expected {decoder_kv.seq_len + 1}",
            )
        LOGGER.log(
            TRACE_LEVEL_NUM,
            "decoder step token=%d decoder_len=%d",
            token,
            output.decoder_kv.seq_len,
        )
        return StepResult(
            logits=np.asarray(output.logits, dtype=np.float32).reshape(-1),
            encoder_kv=encoder_kv,
            decoder_kv=output.decoder_kv,
        )

    def feed_forced_tokens(
        self,
        tokens: Sequence[int],
        encoder_out: np.ndarray,
        cancel_event: Optional[threading.Event] = None,
    ) -> SeededState:
        if not tokens:
            raise ValueError("forced prefix must not be empty")
        spec = self.backend.model_spec
        encoder_kv = KVCache.empty(spec.num_layers, spec.num_heads, spec.head_dim)
        decoder_kv = KVCache.empty(spec.num_layers, spec.num_heads, spec.head_dim)
        logits = np.zeros(0, dtype=np.float32)
        for index, token in enumerate(tokens):
            step = self.decoder_step(
                token,
                encoder_kv,
                decoder_kv,
                encoder_out,
                first_step=index == 0,
                cancel_event=cancel_event,
            )
            logits, encoder_kv, decoder_kv = step.logits, step.encoder_kv, step.decoder_kv
        return SeededState(logits=logits, encoder_kv=encoder_kv, decoder_kv=decoder_kv)

    def run(
        self,
        encoder_out: np.ndarray,
        language_token_id: int,
        initial_prompt: str = "",
        config: DecodeConfig = DecodeConfig.DEFAULT,
        cancel_event: Optional[threading.Event] = None,
    ) -> DecodeResult:
        """Decode ``encoder_out`` with the strategy ``config`` selects."""
        prefix = self.build_forced_prefix(language_token_id, initial_prompt)
        budget = min(
            config.max_tokens, self.backend.model_spec.n_text_ctx - len(prefix.tokens)
        )
        if budget <= 0:
            LOGGER.warning("Forced prefix of %d tokens leaves no room to decode", len(prefix.tokens))
            return DecodeResult((), 0.0, config.label)

        strategy = strategy_for(config)
        seeded = self.feed_forced_tokens(prefix.tokens, encoder_out, cancel_event)
        try:
            result = self._generate(strategy, seeded, encoder_out, budget, cancel_event)
        except STTError as exc:
            if not exc.recoverable or isinstance(strategy, GreedyStrategy):
                raise
            LOGGER.warning(
                "%s failed (%s); falling back to greedy decode", strategy.label, exc.detail
            )
            del seeded
            gc.collect()
            fallback = GreedyStrategy(config.repetition_penalty)
            seeded = self.feed_forced_tokens(prefix.tokens, encoder_out, cancel_event)
            result = self._generate(fallback, seeded, encoder_out, budget, cancel_event)

        LOGGER.info(
            "Decoded %d tokens with %s (avg_logprob=%.3f)",
            len(result.tokens),
            result.strategy,
            result.avg_logprob,
        )
        return result

    def _generate(
        self,
        strategy,
        seeded: SeededState,
        encoder_out: np.ndarray,
        budget: int,
        cancel_event: Optional[threading.Event],
    ) -> DecodeResult:
        stepper = _BoundStepper(self, encoder_out, seeded.encoder_kv, cancel_event)
        result = strategy.decode(stepper, seeded.logits, seeded.decoder_kv, budget)
        LOGGER.debug("%s used %d decoder steps", strategy.label, stepper.steps)
        return result


__all__ = ["DecodeOrchestrator", "SeededState"]
