"""Logging configuration for convo-vault.

Every module logs through a ``convo_vault.<component>`` logger; handlers live
on the package logger only, so one ``setup_logging`` call per process covers
the whole archive pass. Log files go to ~/convo-vault/logs/ unless configured.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_DIR = Path.home() / "convo-vault" / "logs"

PACKAGE_LOGGER = "convo_vault"

MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

# Chatty per-request loggers of the HTTP stack
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure the package logger for one command invocation.

    Replaces any handlers a previous call installed, so switching log
    directories (or console output) between invocations takes effect.

    Args:
        name: Component name, used for the log filename (<log_dir>/<name>.log)
        log_dir: Directory for log files (defaults to ~/convo-vault/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to stderr (defaults to True)

    Returns:
        The configured package logger
    """
    log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = RotatingFileHandler(
        log_dir / f"{name}.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if level > logging.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Logger for a convo-vault component, e.g. ``get_logger("media")``."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{component}")
