"""Helpers for loading the supported language table."""

import csv
import logging
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

from stt_engine.errors import ErrorCode, STTError

LOGGER = logging.getLogger("stt_engine")

LANGUAGE_CSV_PATH = Path(__file__).resolve().parent / "data" / "supported_languages.csv"


class SupportedLanguages:
    """Lazy loader/cache for language codes, names and decoder token ids."""

    def __init__(self, csv_path: Optional[Path] = None) -> None:
        self._csv_path = csv_path or LANGUAGE_CSV_PATH
        self._language_map: Dict[str, Tuple[str, int]] = {}

    def get_codes(self) -> Optional[Set[str]]:
        if not self._language_map:
            self._load()
        return set(self._language_map.keys()) if self._language_map else None

    def get_name(self, code: str) -> str:
        if not code:
            return ""
        if not self._language_map:
            self._load()
        entry = self._language_map.get(code.lower())
        return entry[0] if entry else ""

    def is_supported(self, code: str) -> bool:
        if not self._language_map:
            self._load()
        return bool(code) and code.lower() in self._language_map

    def token_id(self, code: str) -> int:
        """Return the language marker token id for ``code``."""
        if not self._language_map:
            self._load()
        entry = self._language_map.get((code or "").strip().lower())
        if entry is None:
            raise STTError(
                ErrorCode.LANGUAGE_UNSUPPORTED, f"language is not supported: {code!r}"
            )
        return entry[1]

    def _load(self) -> None:
        language_map: Dict[str, Tuple[str, int]] = {}
        try:
            with self._csv_path.open("r", encoding="utf-8") as fh:
                reader = csv.DictReader(fh)
                for row in reader:
                    code = row.get("language_code")
                    name = row.get("language_name")
                    token = row.get("token_id")
                    if not code or not token:
                        continue
                    try:
                        token_id = int(token)
                    except ValueError:
                        LOGGER.warning("Skipping language %s with bad token id %r", code, token)
                        continue
                    key = code.strip().lower()
                    language_map[key] = (name.strip() if name else "", token_id)
        except FileNotFoundError:
            LOGGER.warning("Supported language CSV not found at %s", self._csv_path)
            self._language_map = {}
            return
        self._language_map = language_map


__all__ = ["SupportedLanguages", "LANGUAGE_CSV_PATH"]
