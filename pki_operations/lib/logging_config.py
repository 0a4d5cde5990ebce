"""JSON logging configuration for PKI operations."""

import logging
from pathlib import Path

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "pki_operations"
LOG_FORMAT = "%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s"
LOG_FIELDS = frozenset({"timestamp", "level", "message", "exc_info", "funcName", "lineno"})


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that emits only LOG_FIELDS, with ``levelname`` as ``level``."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = log_record.pop("levelname", record.levelname)
        for key in [k for k in log_record if k not in LOG_FIELDS]:
            del log_record[key]


def _build_formatter() -> CustomJsonFormatter:
    return CustomJsonFormatter(fmt=LOG_FORMAT, timestamp=True)


def _setup_logger() -> logging.Logger:
    """Initialize and configure singleton logger.

    Returns:
        Configured logger with CustomJsonFormatter on stderr
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers if module reloaded
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter())

    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def add_file_handler(log_file: Path, verbose: bool = False) -> logging.Handler | None:
    """Attach a JSON file handler to the singleton logger.

    Without ``verbose`` the console handler is raised to WARNING so unattended
    runs only write to the log file.

    Returns:
        The file handler, or None if the log file cannot be opened
    """
    if verbose:
        LOGGER.setLevel(logging.DEBUG)

    for handler in LOGGER.handlers:
        if type(handler) is logging.StreamHandler and not verbose:
            handler.setLevel(logging.WARNING)

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
    except OSError as e:
        LOGGER.warning("Cannot open log file %s: %s", log_file, e)
        return None

    file_handler.setFormatter(_build_formatter())
    LOGGER.addHandler(file_handler)
    return file_handler


# Singleton logger instance - import this in other modules
LOGGER = _setup_logger()
