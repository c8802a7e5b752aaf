import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional, TextIO

from app.platform.config import settings

# Attributes every LogRecord carries; anything else was passed through `extra`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "context"}


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object on one line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None) or {}
        for key, value in context.items():
            payload.setdefault(key, value)

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload.setdefault(key, value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # default=str keeps odd context values (enums, datetimes) on one line
        return json.dumps(payload, default=str)


def _file_handler(formatter: logging.Formatter) -> RotatingFileHandler:
    log_dir = os.path.join(os.getcwd(), settings.LOG_DIR)
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    log_file_path = os.path.join(log_dir, "browser_compare.log")
    handler = RotatingFileHandler(log_file_path, maxBytes=10_000_000, backupCount=5)
    handler.setFormatter(formatter)
    return handler


def get_logger(name: str):
    """
    Creates a logger instance that writes JSON lines to the console
    (and to a rotating file when LOG_TO_FILE is enabled).
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(settings.LOG_LEVEL.upper())

    formatter = JsonFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.LOG_TO_FILE:
        logger.addHandler(_file_handler(formatter))

    logger.propagate = False
    return logger


class StructuredLogger:
    """
    Leveled logger that takes a message plus arbitrary key/value context.

    Built once at process start and handed to the components that need it.
    Each call turns into exactly one handler emit, and stdlib handlers
    serialize emits with their own lock, so concurrent tasks never produce
    interleaved lines.
    """

    def __init__(
        self,
        name: str = "browser_compare",
        level: Optional[str] = None,
        stream: Optional[TextIO] = None,
        to_file: Optional[bool] = None,
        _logger: Optional[logging.Logger] = None,
    ):
        if _logger is not None:
            # Component loggers propagate to the handlers configured here
            self._logger = _logger
            return

        self._logger = logging.getLogger(name)
        self._logger.setLevel((level or settings.LOG_LEVEL).upper())
        self._logger.propagate = False

        formatter = JsonFormatter()
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)

        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setFormatter(formatter)
        self._logger.addHandler(console_handler)

        if settings.LOG_TO_FILE if to_file is None else to_file:
            self._logger.addHandler(_file_handler(formatter))

    @property
    def name(self) -> str:
        return self._logger.name

    def child(self, suffix: str) -> "StructuredLogger":
        """Logger for a component, sharing this logger's handlers."""
        return StructuredLogger(_logger=self._logger.getChild(suffix))

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, message: str, context: dict[str, Any], exc_info=None) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, message, extra={"context": context}, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, context)

    def warn(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, context)

    warning = warn

    def error(self, message: str, exc_info=None, **context: Any) -> None:
        self._log(logging.ERROR, message, context, exc_info=exc_info)
