"""Default values for engine/runtime configuration."""

from typing import Dict

DEFAULT_PREPROCESS = True
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = None
DEFAULT_TRANSCRIPT_LOG_FILE = None
DEFAULT_WORKER_CLOSE_TIMEOUT_SEC = 30.0
DEFAULT_SAVE_LAST_RECORDING = None

ENGINE_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "audio": {
        "preprocess": "preprocess",
        "save_last_recording": "save_last_recording",
    },
    "decode": {
        "max_tokens": "max_tokens",
    },
    "logging": {
        "level": "log_level",
        "file": "log_file",
        "transcript_file": "transcript_log_file",
    },
    "worker": {
        "close_timeout_sec": "worker_close_timeout_sec",
    },
}

__all__ = [
    "DEFAULT_PREPROCESS",
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_LOG_FILE",
    "DEFAULT_TRANSCRIPT_LOG_FILE",
    "DEFAULT_WORKER_CLOSE_TIMEOUT_SEC",
    "DEFAULT_SAVE_LAST_RECORDING",
    "ENGINE_SECTION_MAP",
]
