"""
Structured JSON logging for Dojo.

Every line is one JSON object. Engine events carry their trainee context
(user, enrollment, session, action) as top-level keys so a single skill's
progression can be followed through the log.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dojo.shared.config import settings

CONTEXT_FIELDS = ("user_id", "enrollment_id", "session_id", "action")

# Attributes every LogRecord has; anything else arrived through `extra`
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """JSON formatter: fixed header, trainee context, then any other extras."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Belts, datetimes and paths fall back to str
        return json.dumps(log_data, default=str)


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None
):
    """
    Route all logging through the JSON formatter.

    Args:
        log_level: Logging level name; defaults to settings.log_level
        log_file: Extra file destination; defaults to settings.log_file
    """
    log_level = log_level or settings.log_level
    log_file = Path(log_file) if log_file else settings.log_file

    formatter = StructuredFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any):
    """
    Log an engine event with its trainee context.

    Keyword arguments become top-level JSON keys; None values are dropped so
    optional ids (e.g. a manual promotion's missing session) leave no key.
    """
    extra = {key: value for key, value in context.items() if value is not None}
    logger.log(level, message, extra=extra)


# Initialize logging on import
setup_logging()
