import pytest

from stt_engine.errors import (
    ERROR_SPECS,
    ErrorCategory,
    ErrorCode,
    STTError,
    category_for,
    format_error,
)


def test_every_code_has_a_spec():
    assert set(ERROR_SPECS) == set(ErrorCode)


def test_only_resource_exhaustion_is_recoverable():
    recoverable = {code for code, spec in ERROR_SPECS.items() if spec.recoverable}
    assert recoverable == {ErrorCode.DECODE_RESOURCE_EXHAUSTED}


@pytest.mark.parametrize(
    "code,category",
    [
        (ErrorCode.AUDIO_LENGTH_INVALID, ErrorCategory.PRECONDITION),
        (ErrorCode.VOCAB_LOAD_FAILED, ErrorCategory.INITIALIZATION),
        (ErrorCode.DECODE_RESOURCE_EXHAUSTED, ErrorCategory.RESOURCE),
        (ErrorCode.INFERENCE_FAILED, ErrorCategory.PROVIDER),
        (ErrorCode.DECODE_CANCELLED, ErrorCategory.CANCELLED),
        (ErrorCode.WORKER_CLOSED, ErrorCategory.WORKER),
    ],
)
def test_categories(code, category):
    assert category_for(code) == category


def test_stt_error_message_and_metadata():
    error = STTError(ErrorCode.INFERENCE_FAILED, "decoder step failed")
    assert str(error) == "ERR3002 decoder step failed"
    assert error.detail == "decoder step failed"
    assert error.category == ErrorCategory.PROVIDER
    assert error.recoverable is False
    assert isinstance(error, RuntimeError)


def test_default_message_used_without_detail():
    assert format_error(ErrorCode.WORKER_CLOSED) == "ERR4001 transcription worker is closed"
    assert STTError(ErrorCode.MODEL_UNKNOWN).detail == "unknown model"
