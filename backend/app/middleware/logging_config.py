"""
Structured JSON logging configuration.

Replaces default text formatter with JSON structured logging so that every
log line includes: timestamp, level, logger, message, request_id, case_id,
duration_ms.
"""

import json
import logging
from datetime import datetime, timezone

from app.middleware.request_context import get_case_id, get_request_id

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
        }

        case_id = getattr(record, "case_id", None) or get_case_id()
        if case_id:
            log_entry["case_id"] = case_id

        # Include duration_ms if attached to the record
        if hasattr(record, "duration_ms"):
            log_entry["duration_ms"] = record.duration_ms

        # Include exception info
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_json_logging(log_level: str = "INFO"):
    """Replace the root logger's formatter with JSON output."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def configure_logging(log_level: str = "INFO", log_format: str = "json"):
    if log_format == "json":
        configure_json_logging(log_level)
    else:
        logging.basicConfig(
            level=getattr(logging, log_level.upper(), logging.INFO),
            format=TEXT_FORMAT,
        )
