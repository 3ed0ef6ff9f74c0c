"""
Logging setup for the storefront service.
"""

import logging
import sys
from typing import Optional

from config import config


def setup_logging(level: Optional[str] = None, format_string: Optional[str] = None) -> None:
    """
    Configure application-wide logging.

    Args:
        level: log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: log record format
    """
    log_level = level or config.LOG_LEVEL
    log_format = format_string or config.LOG_FORMAT

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if config.LOG_FILE:
        handlers.append(logging.FileHandler(config.LOG_FILE, encoding="utf-8"))

    logging.basicConfig(level=numeric_level, format=log_format, handlers=handlers)

    # noisy client libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {log_level} level")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
