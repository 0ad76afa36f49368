from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pytest

from stt_engine.config.default.model import ModelSpec
from stt_engine.decoding.types import EOT, KVCache, StepResult
from stt_engine.model.backends.base import DecoderStepOutput
from stt_engine.tokenizer.vocab import VocabularyCodec

FAKE_SPEC = ModelSpec("fake", num_layers=2, num_heads=2, d_model=8, head_dim=4)
ENCODER_SEQ = 3
LOGIT_FLOOR = -30.0

TEST_VOCAB = {
    "!": 0,
    "Hello": 15496,
    "Ġworld": 995,
    "Ġthe": 262,
    "<|endoftext|>": EOT,
    "<|startoftranscript|>": 50258,
}


def logits_with(scores: Mapping[int, float], size: int = FAKE_SPEC.vocab_size) -> np.ndarray:
    logits = np.full(size, LOGIT_FLOOR, dtype=np.float32)
    for token, score in scores.items():
        logits[token] = score
    return logits


def kv_tokens(cache: KVCache) -> Tuple[int, ...]:
    """Token ids the fakes encode into the first key column of layer 0."""
    if cache.seq_len == 0:
        return ()
    return tuple(int(v) for v in cache.keys[0][0, 0, :, 0])


def extend_kv(cache: KVCache, token: int) -> KVCache:
    keys = []
    for layer in cache.keys:
        column = np.full((1, layer.shape[1], 1, layer.shape[3]), float(token), dtype=np.float32)
        keys.append(np.concatenate([layer, column], axis=2))
    return KVCache.from_layers(keys, keys)


def empty_kv() -> KVCache:
    return KVCache.empty(FAKE_SPEC.num_layers, FAKE_SPEC.num_heads, FAKE_SPEC.head_dim)


class ScriptedLogits:
    """Maps the tokens generated so far to the next logits.

    Histories missing from ``table`` use ``default`` (end of transcript).
    """

    def __init__(
        self,
        table: Dict[Tuple[int, ...], Dict[int, float]],
        prefix_len: int = 0,
        default: Optional[Dict[int, float]] = None,
    ) -> None:
        self.table = table
        self.prefix_len = prefix_len
        self.default = default if default is not None else {EOT: 10.0}

    def __call__(self, history: Sequence[int]) -> np.ndarray:
        generated = tuple(history[self.prefix_len :])
        return logits_with(self.table.get(generated, self.default))


class FakeStepper:
    def __init__(self, script: Callable[[Sequence[int]], np.ndarray]) -> None:
        self.script = script
        self.calls: List[Tuple[int, ...]] = []
        self.fail_with: Optional[BaseException] = None

    def advance(self, token: int, decoder_kv: KVCache) -> StepResult:
        if self.fail_with is not None:
            raise self.fail_with
        history = kv_tokens(decoder_kv) + (token,)
        self.calls.append(history)
        return StepResult(
            logits=self.script(history),
            encoder_kv=empty_kv(),
            decoder_kv=extend_kv(decoder_kv, token),
        )


class DecoderCall:
    def __init__(self, history, use_cache, encoder_kv, decoder_len):
        self.history = history
        self.use_cache = use_cache
        self.encoder_kv = encoder_kv
        self.decoder_len = decoder_len


class FakeBackend:
    """Inference backend producing correctly shaped caches from a logits script."""

    def __init__(self, script: Callable[[Sequence[int]], np.ndarray], spec: ModelSpec = FAKE_SPEC):
        self.model_spec = spec
        self.script = script
        self.encoder_calls = 0
        self.mel_shapes: List[Tuple[int, ...]] = []
        self.calls: List[DecoderCall] = []
        self.closed = False
        self.before_step: Optional[Callable[["FakeBackend", Tuple[int, ...], bool], None]] = None
        self.before_encoder: Optional[Callable[[], None]] = None

    def run_encoder(self, mel: np.ndarray) -> np.ndarray:
        if self.before_encoder is not None:
            self.before_encoder()
        self.encoder_calls += 1
        self.mel_shapes.append(tuple(mel.shape))
        return np.ones((1, ENCODER_SEQ, self.model_spec.d_model), dtype=np.float32)

    def run_decoder_step(self, token_id, encoder_hidden_states, encoder_kv, decoder_kv, use_cache):
        history = kv_tokens(decoder_kv) + (int(token_id),)
        if self.before_step is not None:
            self.before_step(self, history, use_cache)
        self.calls.append(DecoderCall(history, use_cache, encoder_kv, decoder_kv.seq_len))
        present_encoder = None
        if not use_cache:
            spec = self.model_spec
            cross = np.full(
                (1, spec.num_heads, ENCODER_SEQ, spec.head_dim), 7.0, dtype=np.float32
            )
            present_encoder = KVCache.from_layers(
                [cross] * spec.num_layers, [cross] * spec.num_layers
            )
        return DecoderStepOutput(
            logits=self.script(history),
            decoder_kv=extend_kv(decoder_kv, token_id),
            encoder_kv=present_encoder,
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def codec() -> VocabularyCodec:
    return VocabularyCodec(TEST_VOCAB)
