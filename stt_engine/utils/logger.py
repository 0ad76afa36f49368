import contextvars
import logging
import logging.handlers
import queue
from pathlib import Path
from typing import List, Optional

# Custom TRACE level below DEBUG.
TRACE_LEVEL_NUM = 5
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")


def trace(self: logging.Logger, message: str, *args, **kwargs) -> None:
    """Logger helper for TRACE level."""
    if self.isEnabledFor(TRACE_LEVEL_NUM):
        self._log(TRACE_LEVEL_NUM, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore

_REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar(
    "stt_engine_request_id", default="-"
)


def set_request_id(request_id: Optional[str]) -> None:
    """Bind a request id to log records emitted from the current context."""
    _REQUEST_ID.set(request_id or "-")


def clear_request_id() -> None:
    _REQUEST_ID.set("-")


class RequestIdFilter(logging.Filter):
    """Injects the current request id into every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _REQUEST_ID.get()
        return True


LOG_QUEUE: "queue.Queue[logging.LogRecord]" = queue.Queue()
QUEUE_LISTENER: Optional[logging.handlers.QueueListener] = None

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s request_id=%(request_id)s"


def configure_logging(
    level: str,
    log_file: Optional[str],
    transcript_log_file: Optional[str] = None,
) -> None:
    """Configure root logging with queue-based handlers.

    Recognized text goes to ``TRANSCRIPT_LOGGER`` only, which stays silent
    unless ``transcript_log_file`` is given.
    """
    global QUEUE_LISTENER
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if level.upper() == "TRACE":
        numeric_level = TRACE_LEVEL_NUM

    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = []
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # The filter must run on the producing thread, before the record is queued.
    queue_handler = logging.handlers.QueueHandler(LOG_QUEUE)
    queue_handler.addFilter(RequestIdFilter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(queue_handler)

    if QUEUE_LISTENER:
        QUEUE_LISTENER.stop()
    QUEUE_LISTENER = logging.handlers.QueueListener(
        LOG_QUEUE, *handlers, respect_handler_level=True
    )
    QUEUE_LISTENER.start()

    for handler in TRANSCRIPT_LOGGER.handlers:
        handler.close()
    TRANSCRIPT_LOGGER.handlers.clear()
    if transcript_log_file:
        transcript_path = Path(transcript_log_file).expanduser()
        transcript_path.parent.mkdir(parents=True, exist_ok=True)
        transcript_handler = logging.FileHandler(transcript_path)
        transcript_handler.addFilter(RequestIdFilter())
        transcript_handler.setFormatter(formatter)
        TRANSCRIPT_LOGGER.addHandler(transcript_handler)
    else:
        TRANSCRIPT_LOGGER.addHandler(logging.NullHandler())


LOGGER = logging.getLogger("stt_engine")

TRANSCRIPT_LOGGER = logging.getLogger("stt_engine.transcript")
TRANSCRIPT_LOGGER.propagate = False
TRANSCRIPT_LOGGER.setLevel(logging.INFO)
TRANSCRIPT_LOGGER.addHandler(logging.NullHandler())

__all__ = [
    "configure_logging",
    "clear_request_id",
    "set_request_id",
    "LOGGER",
    "TRANSCRIPT_LOGGER",
    "TRACE_LEVEL_NUM",
]
