"""
Structured JSON logging for ragchat.

Every record is one JSON object. A chat turn binds its session id with
``session_scope`` so records emitted anywhere below it (cache, store, LLM
client) carry the id without passing it around.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ragchat.shared.config import settings

_current_session: ContextVar[Optional[str]] = ContextVar("ragchat_session_id", default=None)

# LogRecord attributes that are not user supplied extras
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Chatty third-party loggers kept at WARNING unless running at DEBUG
_QUIET_LOGGERS = ("pymongo", "motor", "httpx", "httpcore", "openai", "anthropic")


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        session_id = getattr(record, "session_id", None) or _current_session.get()
        if session_id:
            entry["session_id"] = session_id

        entry.update(
            (key, value) for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key != "session_id"
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


@contextmanager
def session_scope(session_id: Optional[str]):
    """Attach a session id to every record logged inside the block."""
    token = _current_session.set(session_id)
    try:
        yield
    finally:
        _current_session.reset(token)


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Route all logging through the JSON formatter.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR (defaults to settings)
        log_file: Also write to this file (defaults to settings; None disables)

    Returns:
        The configured root logger
    """
    level = getattr(logging, (log_level or settings.log_level).upper())
    log_file = log_file or settings.log_file

    formatter = StructuredFormatter()
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    session_id: Optional[str] = None,
    action: Optional[str] = None,
    exc_info: bool = False,
    **fields
):
    """
    Log with structured context.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        message: Log message
        session_id: Chat session id; falls back to the bound session
        action: Operation name
        exc_info: Attach the active exception
        **fields: Additional structured fields
    """
    extra = dict(fields)
    if session_id:
        extra["session_id"] = session_id
    if action:
        extra["action"] = action

    logger.log(level, message, extra=extra, exc_info=exc_info)


# Initialize logging on import
setup_logging()
