import json

import numpy as np
import pytest
import yaml

from conftest import TEST_VOCAB, FakeBackend, ScriptedLogits
from stt_engine import main as main_module
from stt_engine.model.transcriber import Transcriber
from stt_engine.tokenizer.vocab import VocabularyCodec
from stt_engine.utils import logger as logger_module
from stt_engine.utils.audio import write_wav


@pytest.fixture(autouse=True)
def _stop_logging_listener():
    yield
    if logger_module.QUEUE_LISTENER:
        logger_module.QUEUE_LISTENER.stop()
        for handler in logger_module.QUEUE_LISTENER.handlers:
            handler.close()
        logger_module.QUEUE_LISTENER = None


@pytest.fixture
def engine_files(tmp_path):
    engine_yaml = tmp_path / "engine.yaml"
    engine_yaml.write_text(yaml.safe_dump({"logging": {"level": "WARNING"}}), encoding="utf-8")
    model_yaml = tmp_path / "model.yaml"
    model_yaml.write_text(yaml.safe_dump({"model": {"name": "tiny"}}), encoding="utf-8")
    vocab_path = tmp_path / "vocab.json"
    vocab_path.write_text(json.dumps(TEST_VOCAB), encoding="utf-8")
    return engine_yaml, model_yaml, vocab_path


@pytest.fixture
def fake_from_paths(monkeypatch):
    seen = {}

    def from_paths(model_dir, vocab_path, model_name, backend="onnx", intra_op_threads=4):
        seen.update(model_dir=model_dir, model=model_name, backend=backend)
        backend_instance = FakeBackend(
            ScriptedLogits({(): {15496: 5.0}, (15496,): {995: 5.0}}, prefix_len=4)
        )
        return Transcriber(VocabularyCodec.from_file(vocab_path), lambda: backend_instance)

    monkeypatch.setattr(main_module.Transcriber, "from_paths", staticmethod(from_paths))
    return seen


def _args(engine_files, *extra):
    engine_yaml, model_yaml, vocab_path = engine_files
    return [
        "--config",
        str(engine_yaml),
        "--model-config",
        str(model_yaml),
        "--vocab",
        str(vocab_path),
        *extra,
    ]


def test_main_prints_one_line_per_file(tmp_path, engine_files, fake_from_paths, capsys):
    clips = []
    for name in ("a.wav", "b.wav"):
        path = tmp_path / name
        write_wav(path, 0.3 * np.sin(np.linspace(0, 200, 16000)).astype(np.float32))
        clips.append(str(path))

    exit_code = main_module.main(
        _args(engine_files, "--decode-profile", "greedy", "--model-dir", "/models/tiny", *clips)
    )

    assert exit_code == 0
    assert capsys.readouterr().out.splitlines() == ["Hello world", "Hello world"]
    assert fake_from_paths == {"model_dir": "/models/tiny", "model": "tiny", "backend": "onnx"}


def test_main_reports_unreadable_files(tmp_path, engine_files, fake_from_paths, capsys):
    exit_code = main_module.main(_args(engine_files, str(tmp_path / "missing.wav")))

    assert exit_code == 1
    assert capsys.readouterr().out == ""


def test_main_rejects_unknown_language(tmp_path, engine_files, fake_from_paths):
    clip = tmp_path / "clip.wav"
    write_wav(clip, np.zeros(1600, dtype=np.float32))

    assert main_module.main(_args(engine_files, "--language", "xx", str(clip))) == 2


def test_main_rejects_unknown_profile(tmp_path, engine_files, fake_from_paths):
    clip = tmp_path / "clip.wav"
    write_wav(clip, np.zeros(1600, dtype=np.float32))

    assert main_module.main(_args(engine_files, "--decode-profile", "nope", str(clip))) == 2


def test_main_counts_out_of_memory_as_failed_file(tmp_path, engine_files, monkeypatch, capsys):
    def exhausted_after_prefix(_backend, history, use_cache):
        if len(history) > 4:
            raise MemoryError()

    def from_paths(model_dir, vocab_path, model_name, backend="onnx", intra_op_threads=4):
        backend_instance = FakeBackend(
            ScriptedLogits({(): {15496: 5.0}, (15496,): {995: 5.0}}, prefix_len=4)
        )
        backend_instance.before_step = exhausted_after_prefix
        return Transcriber(VocabularyCodec.from_file(vocab_path), lambda: backend_instance)

    monkeypatch.setattr(main_module.Transcriber, "from_paths", staticmethod(from_paths))
    clips = []
    for name in ("a.wav", "b.wav"):
        path = tmp_path / name
        write_wav(path, 0.3 * np.sin(np.linspace(0, 200, 16000)).astype(np.float32))
        clips.append(str(path))

    exit_code = main_module.main(_args(engine_files, "--decode-profile", "greedy", *clips))

    assert exit_code == 1
    assert capsys.readouterr().out == ""


def test_main_rejects_unknown_backend(tmp_path, engine_files):
    clip = tmp_path / "clip.wav"
    write_wav(clip, np.zeros(1600, dtype=np.float32))

    assert main_module.main(_args(engine_files, "--backend", "foo", str(clip))) == 2
