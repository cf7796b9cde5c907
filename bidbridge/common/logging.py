"""Centralized logging setup.

Call ``setup_logging()`` once per process (FastAPI lifespan, Celery worker).
Modules get their logger through ``get_logger`` so every record lands under
the ``bidbridge`` namespace.
"""

from __future__ import annotations

import logging
import sys

from bidbridge.config import settings

ROOT_LOGGER_NAME = "bidbridge"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: str | None = None, format_string: str | None = None) -> None:
    """Attach a stdout handler to the package logger. Later calls are no-ops."""
    global _configured

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel((level or settings.LOG_LEVEL).upper())
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    _configured = True
    root.debug("Logging configured (level=%s)", logging.getLevelName(root.level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Drop the package handler so a test can reconfigure."""
    global _configured
    _configured = False
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
