"""Token generation strategies over the orchestrator's per-step interface."""

from __future__ import annotations

import logging
from typing import List, Protocol, Sequence, Tuple

import numpy as np

from stt_engine.decoding.types import (
    EOT,
    Beam,
    CompletedBeam,
    DecodeConfig,
    DecodeResult,
    KVCache,
    StepResult,
)
from stt_engine.errors import ErrorCode, STTError

LOGGER = logging.getLogger("stt_engine.decoder")


class TokenStepper(Protocol):
    """Advances a decoder cache by one token against a fixed encoder context."""

    def advance(self, token: int, decoder_kv: KVCache) -> StepResult:
        """Feed ``token`` on top of ``decoder_kv`` and return the next logits."""
        raise NotImplementedError


class DecodeStrategy(Protocol):
    """Generates tokens after the forced prefix has been fed."""

    label: str

    def decode(
        self,
        stepper: TokenStepper,
        logits: np.ndarray,
        decoder_kv: KVCache,
        max_tokens: int,
    ) -> DecodeResult:
        """Return generated tokens, excluding the end-of-transcript marker."""
        raise NotImplementedError


def log_softmax(logits: np.ndarray) -> np.ndarray:
    scores = np.asarray(logits, dtype=np.float64).reshape(-1)
    shifted = scores - scores.max()
    return shifted - np.log(np.exp(shifted).sum())


def top_k_indices(values: np.ndarray, k: int) -> List[int]:
    """Indices of the ``k`` largest values, ties resolved by lower index."""
    flat = np.asarray(values).reshape(-1)
    k = min(k, flat.shape[0])
    order = np.argsort(-flat, kind="stable")[:k]
    return [int(i) for i in order]


def apply_repetition_penalty(
    logits: np.ndarray, generated: Sequence[int], penalty: float
) -> np.ndarray:
    """Return a copy of ``logits`` penalizing every already generated token.

    Positive logits are divided by ``penalty``, negative ones multiplied.
    A token repeated in ``generated`` is penalized once per occurrence.
    """
    scores = np.array(logits, dtype=np.float32).reshape(-1)
    if penalty <= 1.0 or not generated:
        return scores
    size = scores.shape[0]
    for token in generated:
        if 0 <= token < size:
            if scores[token] > 0:
                scores[token] /= penalty
            else:
                scores[token] *= penalty
    return scores


class GreedyStrategy:
    """Arg-max decoding with an optional repetition penalty."""

    def __init__(self, repetition_penalty: float = 1.0) -> None:
        self.repetition_penalty = repetition_penalty
        self.label = "greedy" if repetition_penalty == 1.0 else "greedy+rep"

    def decode(
        self,
        stepper: TokenStepper,
        logits: np.ndarray,
        decoder_kv: KVCache,
        max_tokens: int,
    ) -> DecodeResult:
        generated: List[int] = []
        sum_logprob = 0.0
        while len(generated) < max_tokens:
            scores = apply_repetition_penalty(logits, generated, self.repetition_penalty)
            log_probs = log_softmax(scores)
            token = int(np.argmax(scores))
            if token == EOT:
                break
            sum_logprob += float(log_probs[token])
            generated.append(token)
            if len(generated) >= max_tokens:
                break
            step = stepper.advance(token, decoder_kv)
            logits, decoder_kv = step.logits, step.decoder_kv

        avg_logprob = sum_logprob / len(generated) if generated else 0.0
        return DecodeResult(tuple(generated), avg_logprob, self.label)


class BeamSearchStrategy:
    """Width-K beam search at temperature zero.

    Every beam owns its decoder cache; a child is built by stepping the
    specific parent it branched from, so siblings never share state.
    Running out of memory is reported as a recoverable
    ``DECODE_RESOURCE_EXHAUSTED`` so the caller can fall back to greedy.
    """

    def __init__(self, beam_width: int = 3, repetition_penalty: float = 1.2) -> None:
        if beam_width < 1:
            raise STTError(
                ErrorCode.DECODE_OPTION_INVALID, f"beam_width must be >= 1, got {beam_width}"
            )
        self.beam_width = beam_width
        self.repetition_penalty = repetition_penalty
        self.label = f"beam{beam_width}"

    def decode(
        self,
        stepper: TokenStepper,
        logits: np.ndarray,
        decoder_kv: KVCache,
        max_tokens: int,
    ) -> DecodeResult:
        try:
            return self._search(stepper, logits, decoder_kv, max_tokens)
        except MemoryError as exc:
            raise STTError(
                ErrorCode.DECODE_RESOURCE_EXHAUSTED,
                f"beam search with width {self.beam_width} ran out of memory",
            ) from exc

    def _search(
        self,
        stepper: TokenStepper,
        logits: np.ndarray,
        decoder_kv: KVCache,
        max_tokens: int,
    ) -> DecodeResult:
        width = self.beam_width
        completed: List[CompletedBeam] = []
        active: List[Beam] = []

        log_probs = log_softmax(logits)
        for token in top_k_indices(log_probs, width):
            score = float(log_probs[token])
            if token == EOT:
                completed.append(CompletedBeam((), score))
                continue
            step = stepper.advance(token, decoder_kv)
            active.append(Beam((token,), score, step.logits, step.decoder_kv))

        for _ in range(max_tokens - 1):
            if not active:
                break
            candidates: List[Tuple[float, int, int]] = []
            for beam_idx, beam in enumerate(active):
                scores = apply_repetition_penalty(
                    beam.logits, beam.tokens, self.repetition_penalty
                )
                beam_log_probs = log_softmax(scores)
                for token in top_k_indices(beam_log_probs, width):
                    candidates.append(
                        (beam.score + float(beam_log_probs[token]), beam_idx, token)
                    )

            candidates.sort(key=lambda candidate: candidate[0], reverse=True)

            next_beams: List[Beam] = []
            for score, beam_idx, token in candidates:
                parent = active[beam_idx]
                if token == EOT:
                    completed.append(CompletedBeam(parent.tokens, score))
                    continue
                if len(next_beams) >= width:
                    continue
                step = stepper.advance(token, parent.decoder_kv)
                next_beams.append(
                    Beam(parent.tokens + (token,), score, step.logits, step.decoder_kv)
                )
            active = next_beams

        # Hypotheses that never emitted EOT within the budget still compete.
        completed.extend(CompletedBeam(beam.tokens, beam.score) for beam in active)

        if not completed:
            return DecodeResult((), 0.0, self.label)

        best = max(completed, key=lambda beam: beam.normalized_score)
        LOGGER.debug(
            "Beam search finished: %d completed candidates, best length=%d",
            len(completed),
            len(best.tokens),
        )
        return DecodeResult(best.tokens, best.normalized_score, self.label)


def strategy_for(config: DecodeConfig) -> DecodeStrategy:
    """Pick the strategy a decode config asks for."""
    if config.beam_width <= 1:
        return GreedyStrategy(config.repetition_penalty)
    return BeamSearchStrategy(config.beam_width, config.repetition_penalty)


__all__ = [
    "BeamSearchStrategy",
    "DecodeStrategy",
    "GreedyStrategy",
    "TokenStepper",
    "apply_repetition_penalty",
    "log_softmax",
    "strategy_for",
    "top_k_indices",
]
