"""Offline Whisper-style speech transcription engine."""

import sys
from pathlib import Path

# Allow ``python stt_engine/main.py`` from a source checkout.
PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

__version__ = "0.1.0"

__all__ = ["PACKAGE_DIR", "PROJECT_ROOT", "__version__"]
