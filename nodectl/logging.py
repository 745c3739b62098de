"""Logging configuration for the nodectl package."""
import logging
import sys

from .config import Config


def setup_logger(name: str, level: int = None) -> logging.Logger:
    """
    Set up a logger with the specified name and log level.

    Args:
        name: The name of the logger
        level: The logging level (default: Config.LOG_LEVEL)

    Returns:
        Configured logger instance
    """
    if level is None:
        level = logging.getLevelName(Config.LOG_LEVEL)
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Don't add handlers if they're already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(Config.LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(handler)

    return logger


def quiet_noisy_libraries(debug_mode: bool = False) -> None:
    """Keep third-party transport chatter out of normal output."""
    if not debug_mode:
        logging.getLogger('paramiko').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('kubernetes').setLevel(logging.WARNING)
