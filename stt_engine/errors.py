"""Centralized error codes and categories."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional


class ErrorCategory(str, Enum):
    """Coarse failure classes that decide how an error is handled."""

    PRECONDITION = "precondition"
    INITIALIZATION = "initialization"
    RESOURCE = "resource"
    PROVIDER = "provider"
    CANCELLED = "cancelled"
    WORKER = "worker"


class ErrorCode(str, Enum):
    """Stable error identifiers surfaced to callers and logs."""

    # precondition (ERR100x)
    AUDIO_LENGTH_INVALID = "ERR1001"
    MODEL_NOT_INITIALIZED = "ERR1002"
    DECODE_OPTION_INVALID = "ERR1003"
    LANGUAGE_UNSUPPORTED = "ERR1004"

    # initialization (ERR200x)
    VOCAB_LOAD_FAILED = "ERR2001"
    MODEL_LOAD_FAILED = "ERR2002"
    MODEL_UNKNOWN = "ERR2003"

    # decode (ERR300x)
    DECODE_RESOURCE_EXHAUSTED = "ERR3001"
    INFERENCE_FAILED = "ERR3002"
    DECODE_CANCELLED = "ERR3003"

    # worker (ERR400x)
    WORKER_CLOSED = "ERR4001"


@dataclass(frozen=True)
class ErrorSpec:
    """Maps an error code to its category and default message."""

    code: ErrorCode
    category: ErrorCategory
    message: str
    recoverable: bool = False


ERROR_SPECS: Final[dict[ErrorCode, ErrorSpec]] = {
    ErrorCode.AUDIO_LENGTH_INVALID: ErrorSpec(
        ErrorCode.AUDIO_LENGTH_INVALID,
        ErrorCategory.PRECONDITION,
        "audio buffer has the wrong number of samples",
    ),
    ErrorCode.MODEL_NOT_INITIALIZED: ErrorSpec(
        ErrorCode.MODEL_NOT_INITIALIZED,
        ErrorCategory.PRECONDITION,
        "model sessions are not initialized",
    ),
    ErrorCode.DECODE_OPTION_INVALID: ErrorSpec(
        ErrorCode.DECODE_OPTION_INVALID,
        ErrorCategory.PRECONDITION,
        "invalid decode option",
    ),
    ErrorCode.LANGUAGE_UNSUPPORTED: ErrorSpec(
        ErrorCode.LANGUAGE_UNSUPPORTED,
        ErrorCategory.PRECONDITION,
        "language is not supported",
    ),
    ErrorCode.VOCAB_LOAD_FAILED: ErrorSpec(
        ErrorCode.VOCAB_LOAD_FAILED,
        ErrorCategory.INITIALIZATION,
        "failed to load vocabulary table",
    ),
    ErrorCode.MODEL_LOAD_FAILED: ErrorSpec(
        ErrorCode.MODEL_LOAD_FAILED,
        ErrorCategory.INITIALIZATION,
        "failed to load model sessions",
    ),
    ErrorCode.MODEL_UNKNOWN: ErrorSpec(
        ErrorCode.MODEL_UNKNOWN,
        ErrorCategory.INITIALIZATION,
        "unknown model",
    ),
    ErrorCode.DECODE_RESOURCE_EXHAUSTED: ErrorSpec(
        ErrorCode.DECODE_RESOURCE_EXHAUSTED,
        ErrorCategory.RESOURCE,
        "decode ran out of memory",
        recoverable=True,
    ),
    ErrorCode.INFERENCE_FAILED: ErrorSpec(
        ErrorCode.INFERENCE_FAILED,
        ErrorCategory.PROVIDER,
        "inference provider failed",
    ),
    ErrorCode.DECODE_CANCELLED: ErrorSpec(
        ErrorCode.DECODE_CANCELLED,
        ErrorCategory.CANCELLED,
        "decode cancelled",
    ),
    ErrorCode.WORKER_CLOSED: ErrorSpec(
        ErrorCode.WORKER_CLOSED,
        ErrorCategory.WORKER,
        "transcription worker is closed",
    ),
}


def spec_for(code: ErrorCode) -> ErrorSpec:
    """Return the ErrorSpec for a given error code."""
    return ERROR_SPECS[code]


def category_for(code: ErrorCode) -> ErrorCategory:
    """Return the category associated with an error code."""
    return ERROR_SPECS[code].category


def format_error(code: ErrorCode, detail: Optional[str] = None) -> str:
    """Format an error code and optional detail into a message."""
    spec = ERROR_SPECS[code]
    message = detail if detail else spec.message
    return f"{spec.code.value} {message}"


class STTError(RuntimeError):
    """Raised for engine-defined errors with category metadata."""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None) -> None:
        """Create an STTError with formatted message and category metadata."""
        self.code = code
        self.category = category_for(code)
        self.recoverable = ERROR_SPECS[code].recoverable
        self.detail = detail or ERROR_SPECS[code].message
        super().__init__(format_error(code, detail))


__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "ErrorSpec",
    "ERROR_SPECS",
    "STTError",
    "category_for",
    "format_error",
    "spec_for",
]
