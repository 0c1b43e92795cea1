"""
Structured Logging Configuration Module

Emits one JSON object per line. Besides the standard record attributes,
each entry carries whichever portfolio context fields the caller supplied:
the acting user, the loan or customer concerned, and for API requests the
method, path and response status.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional


# Record attributes copied into each JSON entry when present
CONTEXT_FIELDS = (
    'user_id', 'action', 'resource',
    'loan_id', 'customer_id',
    'method', 'path', 'status_code',
    'extra',
)


class JSONFormatter(logging.Formatter):
    """Renders a record and its portfolio context as a JSON line"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "loan_portfolio",
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a single JSON handler to the application logger.

    Args:
        level: Log level name
        logger_name: Name of the application logger
        log_file: Append to this file instead of writing to stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "loan_portfolio") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               exc_info: Any = False, **context: Any):
    """
    Log a message with portfolio context.

    Keyword arguments named in CONTEXT_FIELDS (user_id, loan_id, path and so
    on) become top-level keys of the JSON entry; empty values are skipped.

    Example:
        log_action(logger, "info", "Loan closed", user_id=user_id,
                   action="loan_closed", loan_id=loan.id)
    """
    unknown = set(context) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unsupported log context: {', '.join(sorted(unknown))}")

    fields = {k: v for k, v in context.items() if v is not None and v != ''}
    logger.log(getattr(logging, level.upper()), message, extra=fields, exc_info=exc_info)
