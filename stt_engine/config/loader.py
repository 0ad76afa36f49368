from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from stt_engine.config.default import (
    DEFAULT_DECODE_PROFILE_NAME,
    DEFAULT_INTRA_OP_THREADS,
    DEFAULT_LANGUAGE,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL_BACKEND,
    DEFAULT_MODEL_DIR,
    DEFAULT_MODEL_NAME,
    DEFAULT_PREPROCESS,
    DEFAULT_SAVE_LAST_RECORDING,
    DEFAULT_TRANSCRIPT_LOG_FILE,
    DEFAULT_VOCAB_PATH,
    DEFAULT_WORKER_CLOSE_TIMEOUT_SEC,
    ENGINE_SECTION_MAP,
    MODEL_SECTION_MAP,
    default_decode_profiles,
)


@dataclass
class EngineConfig:
    model: str = DEFAULT_MODEL_NAME
    model_dir: str = DEFAULT_MODEL_DIR
    vocab_path: str = DEFAULT_VOCAB_PATH
    backend: str = DEFAULT_MODEL_BACKEND
    intra_op_threads: int = DEFAULT_INTRA_OP_THREADS
    language: str = DEFAULT_LANGUAGE
    decode_profiles: Dict[str, Dict[str, Any]] = field(
        default_factory=default_decode_profiles
    )
    default_decode_profile: str = DEFAULT_DECODE_PROFILE_NAME
    max_tokens: int = DEFAULT_MAX_TOKENS
    preprocess: bool = DEFAULT_PREPROCESS
    save_last_recording: Optional[str] = DEFAULT_SAVE_LAST_RECORDING
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = DEFAULT_LOG_FILE
    transcript_log_file: Optional[str] = DEFAULT_TRANSCRIPT_LOG_FILE
    worker_close_timeout_sec: float = DEFAULT_WORKER_CLOSE_TIMEOUT_SEC


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "engine.yaml"
DEFAULT_MODEL_CONFIG_PATH = PROJECT_ROOT / "config" / "model.yaml"

SECTION_MAP: Dict[str, Dict[str, str]] = {"model": MODEL_SECTION_MAP}
SECTION_MAP.update(ENGINE_SECTION_MAP)


def load_config(
    engine_path: Optional[Path] = None, model_path: Optional[Path] = None
) -> EngineConfig:
    """Load engine + model configuration from YAML, falling back to defaults."""
    cfg = EngineConfig()
    engine_data = _read_yaml(engine_path or DEFAULT_CONFIG_PATH)
    if engine_data:
        _apply_sections(cfg, engine_data)
    model_data = _read_yaml(model_path or DEFAULT_MODEL_CONFIG_PATH)
    if model_data:
        _apply_sections(cfg, model_data)

    return cfg


def _read_yaml(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    if not path or not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if isinstance(data, dict):
        return data
    return None


def _apply_sections(cfg: EngineConfig, raw: Dict[str, Any]) -> None:
    field_names = {f.name for f in fields(EngineConfig)}
    for section, mapping in SECTION_MAP.items():
        data = raw.get(section)
        if not isinstance(data, dict):
            continue
        for key, attr in mapping.items():
            if key in data and data[key] is not None:
                setattr(cfg, attr, data[key])
        if section == "model":
            _apply_decode_profiles(cfg, data.get("decode_profiles"))

    _apply_decode_profiles(cfg, raw.get("decode_profiles"))

    for key, value in raw.items():
        if key in SECTION_MAP:
            continue
        if key in field_names and value is not None:
            setattr(cfg, key, value)


def _apply_decode_profiles(
    cfg: EngineConfig, profiles: Optional[Dict[str, Any]]
) -> None:
    normalized = _normalize_profiles(profiles)
    if normalized:
        # YAML profiles extend the built-ins rather than replacing them.
        merged = default_decode_profiles()
        merged.update(cfg.decode_profiles)
        merged.update(normalized)
        cfg.decode_profiles = merged


def _normalize_profiles(
    profiles: Optional[Dict[str, Any]],
) -> Dict[str, Dict[str, Any]]:
    if not isinstance(profiles, dict):
        return {}
    normalized: Dict[str, Dict[str, Any]] = {}
    for name, options in profiles.items():
        if isinstance(options, dict):
            normalized[name] = dict(options)
    return normalized


__all__ = [
    "EngineConfig",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_MODEL_CONFIG_PATH",
    "load_config",
]
