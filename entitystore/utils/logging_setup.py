"""Logging setup for entity stores with console and rotating file output"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from entitystore.config import LoggingConfig

PACKAGE_LOGGER = "entitystore"


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    log_to_console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_format: str | None = None,
) -> logging.Logger:
    """
    Set up logging for the entitystore package.

    Handlers are attached to the ``entitystore`` logger rather than the
    root logger so host applications keep control of their own logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path of a rotating log file, or None for no file output
        log_to_console: Whether to log to stdout
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of backup files to keep
        log_format: Custom log format string

    Returns:
        Configured package logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(numeric_level)

    # Clear any existing handlers to avoid duplicates
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    package_logger.debug(f"Logging initialized - Level: {log_level}")
    return package_logger


def setup_logging_from_config(config: "LoggingConfig") -> logging.Logger:
    """Apply a LoggingConfig section."""
    return setup_logging(
        log_level=config.level,
        log_file=config.file,
        log_to_console=config.console,
        max_bytes=config.max_bytes,
        backup_count=config.backup_count,
        log_format=config.format,
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Name of the logger (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
