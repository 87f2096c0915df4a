"""Centralized logging for the data-access layer.

Handlers live on the ``sqlaccess`` package logger only; module loggers
(``sqlaccess.coordinator``, ``sqlaccess.bulk``) propagate to it, so a record
is written once however many modules log. Level and file output come from the
``logging`` section of config.yaml, or SQLACCESS_LOG_LEVEL / SQLACCESS_LOG_DIR.
"""
import logging
import os
import sys
from pathlib import Path
from datetime import datetime

PACKAGE_LOGGER = "sqlaccess"

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level or os.getenv("SQLACCESS_LOG_LEVEL", "INFO")).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level=None, log_dir: str | None = None) -> logging.Logger:
    """(Re)configure the package logger: stdout handler plus an optional daily log file.

    level accepts a logging constant or a name such as "DEBUG". Calling again
    replaces the handlers installed by a previous call.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(_resolve_level(level))
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    log_dir = log_dir or os.getenv("SQLACCESS_LOG_DIR")
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(
            Path(log_dir) / f"sqlaccess_{datetime.now().strftime('%Y%m%d')}.log",
            encoding="utf-8",
        )
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    """Logger for a module of this package; configures the package logger on first use."""
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        configure_logging()
    return logging.getLogger(name)
