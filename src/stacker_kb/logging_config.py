"""Centralized logging configuration for the knowledge-base engine."""

import logging
import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"
_configured = False

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the active correlation id ("-" when unset)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_ctx.get() or "-"
        return True


def get_correlation_id() -> str:
    return correlation_id_ctx.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of one query or indexing run.

    Args:
        correlation_id: Id to bind. A fresh UUID4 is generated if None.

    Yields:
        The bound correlation id.
    """
    value = correlation_id or str(uuid.uuid4())
    token = correlation_id_ctx.set(value)
    try:
        yield value
    finally:
        correlation_id_ctx.reset(token)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
) -> None:
    """Configure the package logger with level and output destination.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file. If None, logs to stderr only.
    """
    global _configured
    if _configured:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)

    # Use env vars as overrides if set
    env_level = os.getenv("STACKER_KB_LOG_LEVEL")
    if env_level:
        log_level = getattr(logging, env_level.upper(), log_level)

    env_file = os.getenv("STACKER_KB_LOG_FILE")
    if env_file is not None:
        log_file = env_file

    root = logging.getLogger("stacker_kb")
    root.setLevel(log_level)

    # Clear any existing handlers
    root.handlers.clear()

    formatter = logging.Formatter(_LOG_FORMAT)
    correlation_filter = CorrelationIdFilter()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(correlation_filter)
    root.addHandler(stream_handler)

    # Optional file handler
    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(correlation_filter)
            root.addHandler(file_handler)
        except OSError:
            root.warning("Could not open log file %s, logging to stderr only", log_file)

    # The OpenAI client logs every HTTP request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a module-scoped logger.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        Logger instance.
    """
    if name.startswith("stacker_kb.") or name == "stacker_kb":
        return logging.getLogger(name)
    return logging.getLogger(f"stacker_kb.{name}")
