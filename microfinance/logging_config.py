"""
Structured Logging Configuration Module

Every lending module logs under the ``microfinance`` logger tree. Records may
carry ``user_id``, ``action``, ``resource`` and ``extra`` attributes, passed
through ``extra=`` or ``log_action``; the JSON formatter lifts them into the
emitted object.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


ROOT_LOGGER = "microfinance"

STRUCTURED_FIELDS = ("user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own creation time"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``microfinance`` logger tree.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for structured output, "text" for a plain line format
        log_file: Optional file path; stderr when None

    Returns:
        The configured root application logger
    """
    logger = logging.getLogger(ROOT_LOGGER)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """Log ``message`` with the structured fields that were given"""
    given = dict(user_id=user_id, action=action, resource=resource, extra=extra)
    logger.log(getattr(logging, level.upper()), message,
               extra={name: value for name, value in given.items() if value})
