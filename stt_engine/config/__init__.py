"""Configuration loader utilities."""

from .loader import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MODEL_CONFIG_PATH,
    EngineConfig,
    load_config,
)

__all__ = [
    "EngineConfig",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_MODEL_CONFIG_PATH",
    "load_config",
]
