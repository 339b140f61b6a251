from __future__ import annotations

import logging
import sys

"""Labeled console logging for the importer.

Every line starts with one of INFO | WARN | ERROR | SUMMARY so scripts
wrapping the CLI can grep the output. SUMMARY is a custom level between INFO
and WARNING, used once per run for the metrics line.

Library modules log through logging.getLogger(__name__); they are children of
the "invoice_import" logger configured here and inherit its handler.
"""

__all__ = [
    "setup_logging",
    "get_logger",
    "log_summary",
    "reset_logging",
    "SUMMARY_LEVEL",
]

LOGGER_NAME = "invoice_import"
SUMMARY_LEVEL = 25  # INFO < SUMMARY < WARNING

_LABELS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    SUMMARY_LEVEL: "SUMMARY",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Renders "LABEL message", nothing else (no time, no logger name)."""

    def format(self, record: logging.LogRecord) -> str:
        label = _LABELS.get(record.levelno, record.levelname)
        return f"{label} {record.getMessage()}"


def _stdout_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(LabeledFormatter())
    return handler


def _apply_level(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    for h in logger.handlers:
        h.setLevel(level)


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the application logger once; later calls reuse it.

    debug=True lowers logger and handler to DEBUG, also on a logger that is
    already configured.
    """
    global _logger

    level = logging.DEBUG if debug else logging.INFO
    if _logger is not None:
        if debug:
            _apply_level(_logger, level)
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")
    logger = logging.getLogger(LOGGER_NAME)
    # a previous configuration (e.g. after reset_logging) may still be attached
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(_stdout_handler(level))
    logger.setLevel(level)
    logger.propagate = False  # root handlers would print every line twice

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Application logger, configured on first use."""
    return _logger if _logger is not None else setup_logging()


def log_summary(message: str) -> None:
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Forget the configured logger (tests)."""
    global _logger
    _logger = None
