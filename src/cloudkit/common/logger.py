"""Structured JSON logging.

Each record becomes one JSON object on stdout. Fields handed to
``log_with_context`` land at the top level, with ``service``, ``operation``
and ``attempt`` always written first so retry logs line up.
"""

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict

CONTEXT_FIELDS = ("service", "operation", "attempt")


def _error_fields(exc_info) -> Dict[str, Any]:
    exc_type, exc, tb = exc_info
    fields: Dict[str, Any] = {
        "type": exc_type.__name__,
        "message": str(exc),
        "stacktrace": traceback.format_exception(exc_type, exc, tb),
    }
    # botocore errors and ServiceError carry the provider code here
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        fields["code"] = response.get("Error", {}).get("Code")
    details = getattr(exc, "details", None)
    if details:
        fields["details"] = details
    return fields


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            for name in CONTEXT_FIELDS:
                if name in context:
                    entry[name] = context[name]
            for name, value in context.items():
                entry.setdefault(name, value)

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = _error_fields(record.exc_info)

        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """Logger with a single JSON handler; level from ``LOG_LEVEL``."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
        logger.propagate = False
    return logger


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    """Log ``message`` with structured fields such as service, attempt or upload_id."""
    logger.log(level, message, extra={"context": context})
