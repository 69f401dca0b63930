"""Logging configuration for asyncblobstorage."""

import json
import logging
import sys
from datetime import datetime, timezone

_EXTRA_FIELDS = ("container", "blob", "operation", "duration_ms")


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus any storage extras
    (container, blob, operation, duration_ms).
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text", logger_name: str = "asyncblobstorage") -> None:
    """Attach a stderr handler to the package logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: 'text' for human-readable output, 'json' for structured output.
        logger_name: Logger to configure; pass "" to configure the root logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    target = logging.getLogger(logger_name)
    target.setLevel(numeric_level)

    for handler in target.handlers[:]:
        target.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)

    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    target.addHandler(handler)
