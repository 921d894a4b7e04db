"""Structured JSON logger for container log ingestion.

Outputs JSON to stdout with severity, timestamp, and message fields plus the
ingestion context keys passed through `extra`.
"""

import json
import logging
from datetime import UTC, datetime

CONTEXT_KEYS = (
    "project_id",
    "response_id",
    "batch_id",
    "session_id",
    "stage",
    "duration_seconds",
    "error",
)


class StructuredJsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    SEVERITY_MAP: dict[int, str] = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON string with severity, timestamp, logger, message, and
            any context fields present on the record.
        """
        log_entry: dict[str, object] = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "severity": self.SEVERITY_MAP.get(record.levelno, "DEFAULT"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])

        return json.dumps(log_entry, default=str)

