"""
Logging configuration for the referral risk engine.

Provides structured logging for production monitoring and debugging.
"""

import logging
import sys
from typing import Optional

from ..config import settings


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Component loggers (``referral_guard.<component>``) propagate to the
    package root, which owns the single stdout handler.

    Args:
        name: Logger name (defaults to 'referral_guard')

    Returns:
        Configured logger instance
    """
    logger_name = name or "referral_guard"
    root = logging.getLogger("referral_guard")

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
        root.setLevel(getattr(logging, settings.app_log_level, logging.INFO))

    return logging.getLogger(logger_name)


# Default logger instance
logger = get_logger()
