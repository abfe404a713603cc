"""
Logging configuration for docker-ops-manager.

This module provides centralized logging configuration for the entire application.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "docker-ops-manager"

_FORMAT = '[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s'


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name. If None, uses the default service name.

    Returns:
        Configured logger instance.
    """
    if name is None:
        name = LOGGER_NAME

    logger_instance = logging.getLogger(name)

    # Only configure if not already configured
    if not logger_instance.handlers:
        configure_logger(logger_instance)

    return logger_instance


def configure_logger(logger_instance: logging.Logger) -> None:
    """
    Configure a logger instance with console and optional file handlers.

    The level comes from ``DOCKER_OPS_LOG_LEVEL`` (default INFO). A file
    handler is attached when ``DOCKER_OPS_LOG_FILE`` is set.

    Args:
        logger_instance: Logger instance to configure.
    """
    logger_instance.setLevel(_level_from_name(os.environ.get("DOCKER_OPS_LOG_LEVEL", "INFO")))

    formatter = logging.Formatter(_FORMAT)

    log_file = os.environ.get("DOCKER_OPS_LOG_FILE")
    if log_file:
        add_file_handler(logger_instance, log_file)

    # Console handler (always add)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger_instance.addHandler(console_handler)


def add_file_handler(logger_instance: logging.Logger, log_file: Union[str, Path]) -> bool:
    """
    Attach a file handler, creating the parent directory if needed.

    Returns:
        True if the handler was attached, False if file logging is unavailable.
    """
    path = Path(log_file)
    for handler in logger_instance.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path.resolve():
            return True
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
    except OSError as e:
        # If file logging fails, just use console
        print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)
        return False
    file_handler.setFormatter(logging.Formatter(_FORMAT))
    logger_instance.addHandler(file_handler)
    return True


def set_level(level: str) -> None:
    """Change the level of the default logger at runtime (``--log-level``)."""
    logger.setLevel(_level_from_name(level))


def _level_from_name(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


# Create a default logger instance for backward compatibility
logger = get_logger(LOGGER_NAME)


# Export for convenience
__all__ = ["add_file_handler", "configure_logger", "get_logger", "logger", "set_level"]
