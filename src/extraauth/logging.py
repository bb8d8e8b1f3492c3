"""Logging configuration using loguru.

The library only emits records through ``loguru.logger``; applications decide
where they go. setup_logging() provides the two formats used by the CLI:

- Human-readable logging for terminals
- Structured JSON logging (GCP Cloud Logging compatible) for log collectors

Records never include access tokens or assertions.
"""

import json
import sys
from datetime import UTC, datetime

from loguru import logger

# Map loguru levels to GCP severity levels
LEVEL_TO_SEVERITY = {
    "TRACE": "DEBUG",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "SUCCESS": "INFO",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "CRITICAL",
}


def _extra_fields(record: dict) -> dict:
    """Flatten ``extra={...}`` passed to a logging call into one dict."""
    fields: dict = {}
    for key, value in record["extra"].items():
        if key == "extra" and isinstance(value, dict):
            fields.update(value)
        else:
            fields[key] = value
    return fields


def _json_formatter(record: dict) -> str:
    """Format log record as GCP Cloud Logging compatible JSON."""
    log_entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": LEVEL_TO_SEVERITY.get(record["level"].name, "INFO"),
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    for key, value in _extra_fields(record).items():
        if key not in log_entry:
            log_entry[key] = value

    if record["exception"]:
        log_entry["exception"] = {
            "type": record["exception"].type.__name__ if record["exception"].type else None,
            "value": str(record["exception"].value) if record["exception"].value else None,
        }

    # loguru treats the returned string as a format template with color markup
    serialized = json.dumps(log_entry, default=str)
    return serialized.replace("{", "{{").replace("}", "}}").replace("<", r"\<") + "\n"


def _dev_formatter(record: dict) -> str:
    """Format log record for terminals, appending extra fields as key=value."""
    fields = _extra_fields(record)
    context_str = " ".join(f"{k}={v}" for k, v in fields.items())
    if context_str:
        escaped = context_str.replace("{", "{{").replace("}", "}}").replace("<", r"\<")
        context_str = f" [{escaped}]"

    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>" + context_str + "\n"
        "{exception}"
    )


def setup_logging(json_logs: bool = False, log_level: str = "WARNING") -> None:
    """Configure loguru to write to stderr.

    Args:
        json_logs: If True, output JSON logs
        log_level: Minimum log level to output
    """
    logger.remove()

    if json_logs:
        logger.add(
            sys.stderr,
            format=_json_formatter,
            level=log_level,
            serialize=False,
        )
    else:
        logger.add(
            sys.stderr,
            format=_dev_formatter,
            level=log_level,
            colorize=sys.stderr.isatty(),
        )


__all__ = ["logger", "setup_logging"]
