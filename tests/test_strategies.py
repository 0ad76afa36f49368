import numpy as np
import pytest

from conftest import FakeStepper, ScriptedLogits, empty_kv
from stt_engine.decoding.strategies import (
    BeamSearchStrategy,
    GreedyStrategy,
    apply_repetition_penalty,
    log_softmax,
    strategy_for,
    top_k_indices,
)
from stt_engine.decoding.types import EOT, DecodeConfig
from stt_engine.errors import ErrorCode, STTError

LINEAR_SCRIPT = {
    (): {1: 2.0, 2: 1.5},
    (1,): {3: 1.0, 4: 0.5},
    (1, 3): {7: 1.0},
}

# Greedy commits to token 1, whose continuation is spread over many tokens;
# token 2 leads to a confident short transcript.
DIVERGING_SCRIPT = {
    (): {1: 2.0, 2: 1.5},
    (1,): {3: 0.0, **{t: 0.0 for t in range(20, 30)}},
    (2,): {6: 10.0},
}


def _run(strategy, table, max_tokens=10, default=None):
    script = ScriptedLogits(table, default=default)
    stepper = FakeStepper(script)
    result = strategy.decode(stepper, script(()), empty_kv(), max_tokens)
    return result, stepper


def test_log_softmax_normalizes():
    log_probs = log_softmax(np.array([1.0, 2.0, 3.0], dtype=np.float32))
    assert np.exp(log_probs).sum() == pytest.approx(1.0)
    assert int(np.argmax(log_probs)) == 2


def test_top_k_prefers_lower_index_on_ties():
    assert top_k_indices(np.array([1.0, 3.0, 3.0, 0.0]), 2) == [1, 2]
    assert top_k_indices(np.array([1.0, 2.0]), 5) == [1, 0]


def test_repetition_penalty_scales_by_sign_and_occurrence():
    logits = np.array([2.0, -2.0, 1.0], dtype=np.float32)
    penalized = apply_repetition_penalty(logits, [0, 1, 0], 2.0)

    assert penalized.tolist() == [0.5, -4.0, 1.0]
    assert logits.tolist() == [2.0, -2.0, 1.0]


def test_repetition_penalty_disabled_at_one():
    logits = np.array([2.0, -2.0], dtype=np.float32)
    assert apply_repetition_penalty(logits, [0, 1], 1.0).tolist() == [2.0, -2.0]


def test_greedy_stops_immediately_on_eot():
    result, stepper = _run(GreedyStrategy(), {(): {EOT: 10.0}})

    assert result.tokens == ()
    assert result.avg_logprob == 0.0
    assert stepper.calls == []


def test_greedy_follows_argmax_until_eot():
    result, stepper = _run(GreedyStrategy(), LINEAR_SCRIPT)

    assert result.tokens == (1, 3, 7)
    assert result.strategy == "greedy"
    assert stepper.calls == [(1,), (1, 3), (1, 3, 7)]
    assert result.avg_logprob < 0.0


def test_greedy_respects_token_budget_without_extra_step():
    result, stepper = _run(GreedyStrategy(), {}, max_tokens=4, default={9: 10.0})

    assert result.tokens == (9, 9, 9, 9)
    assert len(stepper.calls) == 3


def test_greedy_repetition_penalty_changes_choice():
    table = {(): {5: 3.0, 6: 2.9}, (5,): {5: 3.0, 6: 2.9}}

    plain, _ = _run(GreedyStrategy(1.0), table)
    penalized, _ = _run(GreedyStrategy(1.2), table)

    assert plain.tokens == (5, 5)
    assert penalized.tokens == (5, 6)
    assert penalized.strategy == "greedy+rep"


def test_beam_width_one_matches_greedy():
    greedy, _ = _run(GreedyStrategy(1.0), LINEAR_SCRIPT)
    beam, _ = _run(BeamSearchStrategy(beam_width=1, repetition_penalty=1.0), LINEAR_SCRIPT)

    assert beam.tokens == greedy.tokens
    assert beam.strategy == "beam1"


def test_beam_width_one_matches_greedy_with_repetition_penalty():
    table = {(): {5: 3.0, 6: 2.9}, (5,): {5: 3.0, 6: 2.9}}

    greedy, _ = _run(GreedyStrategy(1.2), table)
    beam, _ = _run(BeamSearchStrategy(beam_width=1, repetition_penalty=1.2), table)

    assert greedy.tokens == (5, 6)
    assert beam.tokens == greedy.tokens


def test_beam_search_finds_better_normalized_hypothesis():
    greedy, _ = _run(GreedyStrategy(1.0), DIVERGING_SCRIPT)
    beam, stepper = _run(BeamSearchStrategy(beam_width=2, repetition_penalty=1.0), DIVERGING_SCRIPT)

    assert greedy.tokens == (1, 3)
    assert beam.tokens == (2, 6)
    # each child is stepped from the parent it extends
    assert (2, 6) in stepper.calls
    assert (1, 3) in stepper.calls


def test_beam_returns_empty_when_eot_wins_first_step():
    result, _ = _run(BeamSearchStrategy(beam_width=3), {(): {EOT: 10.0}})

    assert result.tokens == ()


def test_beam_respects_token_budget():
    result, _ = _run(BeamSearchStrategy(beam_width=2), {}, max_tokens=4, default={9: 10.0})

    assert len(result.tokens) == 4


def test_beam_memory_error_is_recoverable():
    script = ScriptedLogits(LINEAR_SCRIPT)
    stepper = FakeStepper(script)
    stepper.fail_with = MemoryError()

    with pytest.raises(STTError) as exc_info:
        BeamSearchStrategy(beam_width=3).decode(stepper, script(()), empty_kv(), 10)

    assert exc_info.value.code == ErrorCode.DECODE_RESOURCE_EXHAUSTED
    assert exc_info.value.recoverable is True


def test_beam_rejects_zero_width():
    with pytest.raises(STTError) as exc_info:
        BeamSearchStrategy(beam_width=0)
    assert exc_info.value.code == ErrorCode.DECODE_OPTION_INVALID


def test_strategy_for_selects_by_width():
    assert isinstance(strategy_for(DecodeConfig.GREEDY), GreedyStrategy)
    assert isinstance(strategy_for(DecodeConfig.GREEDY_WITH_PENALTY), GreedyStrategy)
    beam = strategy_for(DecodeConfig.DEFAULT)
    assert isinstance(beam, BeamSearchStrategy)
    assert beam.beam_width == 3
