"""
Structured logging configuration for RateGuard FX.
"""
import logging
import os
import sys
from typing import Any, Optional


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Configure and return a logger instance.

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env LOG_LEVEL or INFO.

    Returns:
        Configured logger instance
    """
    log_level = level or os.getenv("LOG_LEVEL", "INFO")

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Avoid duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level.upper()))

        formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


_event_logger = setup_logger("rateguard.events")


def log_event(name: str, **params: Any) -> None:
    """
    Emit a product analytics event as a single log line.

    Args:
        name: Event name (e.g. "analysis_complete")
        **params: Event parameters, rendered as key=value pairs
    """
    rendered = " ".join(f"{key}={value!r}" for key, value in sorted(params.items()))
    _event_logger.info(f"[event] {name} {rendered}".rstrip())
