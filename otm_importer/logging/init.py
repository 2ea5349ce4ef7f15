from __future__ import annotations

import logging
import sys

"""Logging initialization with labeled prefixes.

Every line written by the importer starts with one of INFO|WARN|ERROR|SUMMARY
so operators (and scripts tailing the output) can filter by label. The
SUMMARY level sits between INFO and WARNING and is used once per run for the
row counts line.

Modules log through `logging.getLogger(__name__)`; all of them are children
of the `otm_importer` logger configured here.
"""

__all__ = [
    "LOGGER_NAME",
    "SUMMARY_LEVEL",
    "get_logger",
    "log_summary",
    "reset_logging",
    "set_debug",
    "setup_logging",
]

LOGGER_NAME = "otm_importer"

# Custom SUMMARY level (between INFO=20 and WARNING=30)
SUMMARY_LEVEL = 25

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formatter that prefixes each message with its level label.

    Exception info, when attached, is appended after the message so
    `logger.exception` still carries the traceback to the server log.
    """

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        line = f"{level_label} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging() -> logging.Logger:
    """Configure the `otm_importer` logger (idempotent).

    Output goes to stdout for consistency with the CLI contract; propagation
    to the root logger is disabled to avoid duplicate lines.
    """
    global _logger

    if _logger is not None:
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)

    logger.propagate = False

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Return the configured application logger, configuring it on first use."""
    if _logger is None:
        return setup_logging()
    return _logger


def set_debug(enabled: bool = True) -> None:
    logger = get_logger()
    level = logging.DEBUG if enabled else logging.INFO
    for h in logger.handlers:
        h.setLevel(level)
    logger.setLevel(level)


def log_summary(message: str) -> None:
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Reset the global logger state. Mainly for testing purposes."""
    global _logger
    _logger = None
