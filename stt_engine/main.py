import argparse
import sys
from pathlib import Path
from typing import List, Optional

from stt_engine.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MODEL_CONFIG_PATH,
    EngineConfig,
    load_config,
)
from stt_engine.config.default.model import ALLOWED_DECODE_OPTION_KEYS
from stt_engine.config.languages import SupportedLanguages
from stt_engine.decoding.types import DecodeConfig
from stt_engine.errors import ErrorCode, STTError
from stt_engine.model.transcriber import Transcriber
from stt_engine.model.worker import TranscriptionWorker
from stt_engine.utils.audio import read_wav
from stt_engine.utils.logger import LOGGER, configure_logging


def resolve_decode_config(
    config: EngineConfig,
    profile: Optional[str] = None,
    beam_size: Optional[int] = None,
    repetition_penalty: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> DecodeConfig:
    """Build a DecodeConfig from a named profile plus explicit overrides."""
    name = profile or config.default_decode_profile
    options = config.decode_profiles.get(name)
    if options is None:
        raise STTError(
            ErrorCode.DECODE_OPTION_INVALID,
            f"unknown decode profile {name!r}; expected one of {sorted(config.decode_profiles)}",
        )
    unknown = set(options) - ALLOWED_DECODE_OPTION_KEYS
    if unknown:
        LOGGER.warning("Ignoring unsupported decode options %s in profile %s", sorted(unknown), name)
    merged = {key: value for key, value in options.items() if key in ALLOWED_DECODE_OPTION_KEYS}
    if beam_size is not None:
        merged["beam_size"] = beam_size
    if repetition_penalty is not None:
        merged["repetition_penalty"] = repetition_penalty
    if max_tokens is not None:
        merged["max_tokens"] = max_tokens
    return DecodeConfig.from_options(merged, max_tokens=config.max_tokens)


def transcribe_files(config: EngineConfig, files: List[str], args: argparse.Namespace) -> int:
    """Transcribe each file in order, printing one line of text per file."""
    languages = SupportedLanguages()
    language_token_id = languages.token_id(config.language)
    decode_config = resolve_decode_config(
        config, args.decode_profile, args.beam_size, args.repetition_penalty, args.max_tokens
    )
    transcriber = Transcriber.from_paths(
        config.model_dir,
        config.vocab_path,
        config.model,
        backend=config.backend,
        intra_op_threads=config.intra_op_threads,
    )
    transcriber.init()
    LOGGER.info(
        "Engine ready (model=%s, language=%s, decode=%s)",
        config.model,
        config.language,
        decode_config.label,
    )
    worker = TranscriptionWorker(
        transcriber,
        language_token_id,
        decode_config=decode_config,
        initial_prompt=args.prompt or "",
        preprocess_audio=config.preprocess,
        save_last_recording=config.save_last_recording,
    )
    failures = 0
    try:
        for path in files:
            try:
                samples = read_wav(path)
            except (OSError, RuntimeError) as exc:
                LOGGER.error("Failed to read %s: %s", path, exc)
                failures += 1
                continue
            try:
                result = worker.submit(samples).result()
            except STTError as exc:
                LOGGER.error("Transcription failed for %s: %s", path, exc)
                failures += 1
                continue
            print(result.text, flush=True)
    finally:
        worker.close(config.worker_close_timeout_sec)
    return 1 if failures else 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Offline Whisper transcription engine")
    parser.add_argument("files", nargs="+", help="WAV files to transcribe")
    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to YAML config (default search: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--model-config",
        type=str,
        help=f"Path to model YAML (default: {DEFAULT_MODEL_CONFIG_PATH})",
    )
    parser.add_argument(
        "--model-dir", default=None, help="Directory holding the ONNX encoder/decoder"
    )
    parser.add_argument(
        "--model", default=None, help="Model variant (tiny, tiny-pl, base, small)"
    )
    parser.add_argument("--vocab", default=None, help="Path to vocab.json")
    parser.add_argument(
        "--backend", default=None, help="Inference backend name (default: onnx)"
    )
    parser.add_argument(
        "--language", default=None, help="Language code, e.g. en, pl, de"
    )
    parser.add_argument(
        "--prompt", default=None, help="Initial prompt used as previous-context text"
    )
    parser.add_argument(
        "--decode-profile",
        default=None,
        help="Named decode profile (greedy, greedy_penalty, beam)",
    )
    parser.add_argument(
        "--beam-size", type=int, default=None, help="Override the profile beam width"
    )
    parser.add_argument(
        "--repetition-penalty",
        type=float,
        default=None,
        help="Override the profile repetition penalty (1.0 disables)",
    )
    parser.add_argument(
        "--max-tokens", type=int, default=None, help="Maximum tokens generated per file"
    )
    parser.add_argument(
        "--no-preprocess",
        dest="preprocess",
        action="store_false",
        help="Skip high-pass filtering and gain normalization",
    )
    parser.set_defaults(preprocess=None)
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. TRACE, DEBUG, INFO); overrides config",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional log file path; overrides config",
    )
    parser.add_argument(
        "--transcript-log-file",
        default=None,
        help="Optional file receiving recognized text; overrides config",
    )
    return parser.parse_args(argv)


def configure_from_args(args: argparse.Namespace) -> EngineConfig:
    config_arg_path = Path(args.config).expanduser() if args.config else None
    model_config_arg_path = (
        Path(args.model_config).expanduser() if args.model_config else None
    )
    effective_config_path = config_arg_path or DEFAULT_CONFIG_PATH
    effective_model_path = model_config_arg_path or DEFAULT_MODEL_CONFIG_PATH
    config = load_config(effective_config_path, effective_model_path)

    if args.model is not None:
        config.model = args.model
    if args.model_dir is not None:
        config.model_dir = args.model_dir
    if args.vocab is not None:
        config.vocab_path = args.vocab
    if args.backend is not None:
        config.backend = args.backend
    if args.language is not None:
        config.language = args.language
    if args.preprocess is not None:
        config.preprocess = args.preprocess
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_file is not None:
        config.log_file = args.log_file
    if args.transcript_log_file is not None:
        config.transcript_log_file = args.transcript_log_file

    configure_logging(config.log_level, config.log_file, config.transcript_log_file)
    if effective_config_path.exists():
        LOGGER.info("Loaded engine config from %s", effective_config_path)
    else:
        LOGGER.info(
            "Engine config file not found at %s; using defaults/CLI overrides",
            effective_config_path,
        )
    if effective_model_path.exists():
        LOGGER.info("Loaded model config from %s", effective_model_path)
    else:
        LOGGER.info(
            "Model config file not found at %s; using defaults/CLI overrides",
            effective_model_path,
        )
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = configure_from_args(args)
    try:
        return transcribe_files(config, args.files, args)
    except STTError as exc:
        LOGGER.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
