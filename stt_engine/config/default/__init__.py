"""Default configuration values."""

from .engine import *  # noqa: F401,F403
from .engine import __all__ as _engine_all
from .model import *  # noqa: F401,F403
from .model import __all__ as _model_all

__all__ = list(_engine_all) + list(_model_all)
