"""
Log output for pii-tokenizer.

Modules only create loggers (``logging.getLogger(__name__)``). An
application that wants the package's records written somewhere calls
:func:`setup_logging` once; it attaches a handler to the ``pii_tokenizer``
logger only, leaving the application's root logger alone.

Both formatters scrub what they emit: the rendered message goes through
:func:`~pii_tokenizer.logging_utils.sanitize_for_logging`, and ``extra``
values go through the payload redaction used for service traffic. A value
that slips into a log call therefore still reaches the handler masked.

Usage:
    from pii_tokenizer.logging import setup_logging

    setup_logging(level="DEBUG", json_format=True)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from pii_tokenizer.logging_utils import (
    REDACTED,
    SENSITIVE_KEYS,
    redact_payload,
    sanitize_for_logging,
)

PACKAGE_LOGGER = "pii_tokenizer"

_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class RedactingFormatter(logging.Formatter):
    """Base formatter exposing the scrubbed message and extras of a record."""

    def scrubbed_message(self, record: logging.LogRecord) -> str:
        return sanitize_for_logging(record.getMessage(), max_length=0)

    def scrubbed_extras(self, record: logging.LogRecord) -> dict[str, Any]:
        extras = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in SENSITIVE_KEYS:
                extras[key] = REDACTED
                continue
            value = redact_payload(value)
            if isinstance(value, str):
                value = sanitize_for_logging(value, max_length=0)
            extras[key] = value
        return extras


class JSONFormatter(RedactingFormatter):
    """
    One JSON object per record.

    ``{"timestamp", "level", "logger", "message", ...extras}``; warnings and
    above add ``source``, records with exception info add ``exception``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self.scrubbed_message(record),
        }
        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            entry["exception"] = sanitize_for_logging(
                self.formatException(record.exc_info), max_length=0
            )
        entry.update(self.scrubbed_extras(record))
        return json.dumps(entry, default=str)


class DevelopmentFormatter(RedactingFormatter):
    """``2024-01-15 10:30:00 WARNING [pii_tokenizer.coordinator] message key=value``"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_colors and record.levelno in self.LEVEL_COLORS:
            level = f"{self.LEVEL_COLORS[record.levelno]}{level}{self.RESET}"

        when = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        parts = [when, level, f"[{record.name}]", self.scrubbed_message(record)]
        parts += [f"{key}={value}" for key, value in self.scrubbed_extras(record).items()]
        line = " ".join(parts)

        if record.exc_info:
            line += "\n" + sanitize_for_logging(self.formatException(record.exc_info), max_length=0)
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> logging.Logger:
    """
    Route the package's log records to stdout (and optionally a file).

    Replaces any handlers previously installed by this function. Records
    stop propagating to the root logger so they are not written twice.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_format: JSON lines on stdout instead of the development format
        log_file: Also append JSON lines to this file
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level.upper())
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(
        JSONFormatter() if json_format else DevelopmentFormatter(use_colors=sys.stdout.isatty())
    )
    package_logger.addHandler(stream)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        package_logger.addHandler(file_handler)

    package_logger.propagate = False
    return package_logger


def setup_logging_from_settings() -> logging.Logger:
    """Apply ``TokenizerSettings.logging``."""
    from pii_tokenizer.config import get_settings

    cfg = get_settings().logging
    return setup_logging(level=cfg.level, json_format=cfg.json_format, log_file=cfg.file)
