"""
toolwarden Structured Logging

Provides a configured logger for toolwarden using stdlib logging with
structured context. Logs go to stderr so that stdout stays reserved for
the mediated tool payload.

Usage:
    import logging

    logger = logging.getLogger(__name__)
    logger.warning("Command flagged", extra={"tool_name": "Bash", "confidence": 65})

For machine consumption, configure JSON output:
    from toolwarden.logging import configure_logging
    configure_logging(json_output=True, level="INFO")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Extra attributes promoted into the structured payload
_CONTEXT_KEYS = (
    "session_id",
    "tool_name",
    "action",
    "verdict",
    "category",
    "confidence",
    "tier",
    "host",
    "score",
    "status",
    "count",
)


class WardenFormatter(logging.Formatter):
    """Structured log formatter for toolwarden.

    Outputs either human-readable or JSON format depending on configuration.
    """

    def __init__(self, json_output: bool = False):
        super().__init__()
        self._json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self._json_output:
            return json.dumps(log_data, default=str)

        extra_keys = {
            k: v
            for k, v in log_data.items()
            if k not in ("timestamp", "level", "logger", "message", "exception")
        }
        extra_str = ""
        if extra_keys:
            extra_str = " | " + " ".join(f"{k}={v}" for k, v in extra_keys.items())

        line = f"[{log_data['timestamp']}] {record.levelname:8s} {record.name}: {record.getMessage()}{extra_str}"
        if "exception" in log_data:
            line = f"{line}\n{log_data['exception']}"
        return line


def configure_logging(
    level: str = "WARNING",
    json_output: bool = False,
) -> None:
    """Configure toolwarden logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: If True, output one JSON object per line.
    """
    root_logger = logging.getLogger("toolwarden")
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(WardenFormatter(json_output=json_output))
    root_logger.addHandler(handler)

    root_logger.propagate = False


def get_logger(name: str = "toolwarden") -> logging.Logger:
    """Get a toolwarden logger instance.

    Args:
        name: Logger name (usually module path like "toolwarden.security").

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)
