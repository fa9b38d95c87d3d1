"""Structured logging configuration for Creamie chat sync."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

# Attributes callers attach through ``extra=`` that are worth keeping in the JSON line
CONTEXT_FIELDS = ("conversation_id", "message_id", "channel", "state", "error_code")


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add chat context fields if present
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = str(value)

        return json.dumps(log_data)


def setup_logging(log_level: str = "INFO") -> None:
    """Set up structured JSON logging."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level))
    # Replace the plain basicConfig handler so lines are not emitted twice
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
