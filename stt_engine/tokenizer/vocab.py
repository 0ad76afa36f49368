"""Byte-level BPE vocabulary codec for Whisper token ids."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Union

from stt_engine.decoding.types import SPECIAL_TOKEN_START
from stt_engine.errors import ErrorCode, STTError

LOGGER = logging.getLogger("stt_engine.tokenizer")

# Longest vocabulary entry tried during greedy segmentation.
MAX_MATCH_LEN = 20


@lru_cache(maxsize=None)
def bytes_to_unicode() -> Dict[int, str]:
    """GPT-2's reversible byte -> printable character table.

    Printable Latin-1 bytes (33-126, 161-172, 174-255) map to themselves;
    every other byte maps to a code point from U+0100 upward.
    """
    printable = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    mapping = {b: chr(b) for b in printable}
    n = 0
    for b in range(256):
        if b not in mapping:
            mapping[b] = chr(256 + n)
            n += 1
    return mapping


@lru_cache(maxsize=None)
def unicode_to_bytes() -> Dict[str, int]:
    return {char: byte for byte, char in bytes_to_unicode().items()}


class VocabularyCodec:
    """Maps token ids to text and text to (approximate) token ids.

    ``encode`` is a greedy longest-match over the vocabulary, not true BPE
    merging; ids may differ from the reference tokenizer in edge cases. It
    is meant for prompt conditioning only.
    """

    def __init__(self, vocab: Mapping[str, int]) -> None:
        byte_decoder = unicode_to_bytes()
        self._id_to_text: Dict[int, str] = {}
        self._text_to_id: Dict[str, int] = {}
        for token, token_id in vocab.items():
            if not isinstance(token, str) or isinstance(token_id, bool):
                raise STTError(
                    ErrorCode.VOCAB_LOAD_FAILED, f"bad vocabulary entry {token!r}"
                )
            try:
                token_id = int(token_id)
            except (TypeError, ValueError) as exc:
                raise STTError(
                    ErrorCode.VOCAB_LOAD_FAILED,
                    f"bad id {token_id!r} for token {token!r}",
                ) from exc
            raw = bytes(byte_decoder.get(ch, ord(ch) & 0xFF) for ch in token)
            self._id_to_text[token_id] = raw.decode("utf-8", errors="replace")
            if token_id < SPECIAL_TOKEN_START:
                self._text_to_id[token] = token_id
        LOGGER.debug(
            "Vocabulary loaded: %d tokens (%d encodable)",
            len(self._id_to_text),
            len(self._text_to_id),
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "VocabularyCodec":
        """Load a ``vocab.json`` token -> id table.

        A missing or malformed file is fatal for the codec.
        """
        vocab_path = Path(path).expanduser()
        try:
            with vocab_path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise STTError(
                ErrorCode.VOCAB_LOAD_FAILED,
                f"failed to load vocabulary from {vocab_path}: {exc}",
            ) from exc
        if not isinstance(data, dict) or not data:
            raise STTError(
                ErrorCode.VOCAB_LOAD_FAILED,
                f"vocabulary at {vocab_path} is not a token->id object",
            )
        return cls(data)

    def __len__(self) -> int:
        return len(self._id_to_text)

    def decode(self, token_ids: Iterable[int]) -> str:
        """Join the text of every non-special token and strip whitespace."""
        parts: List[str] = []
        for token_id in token_ids:
            if token_id >= SPECIAL_TOKEN_START:
                continue
            text = self._id_to_text.get(int(token_id))
            if text is not None:
                parts.append(text)
        return "".join(parts).strip()

    def encode(self, text: str) -> List[int]:
        if not text or not text.strip():
            return []
        byte_encoder = bytes_to_unicode()
        encoded = "".join(byte_encoder[b] for b in text.encode("utf-8"))
        tokens: List[int] = []
        pos = 0
        while pos < len(encoded):
            max_len = min(len(encoded) - pos, MAX_MATCH_LEN)
            for length in range(max_len, 0, -1):
                token_id = self._text_to_id.get(encoded[pos : pos + length])
                if token_id is not None:
                    tokens.append(token_id)
                    pos += length
                    break
            else:
                # unknown byte
                pos += 1
        return tokens


__all__ = ["VocabularyCodec", "bytes_to_unicode", "unicode_to_bytes", "MAX_MATCH_LEN"]
