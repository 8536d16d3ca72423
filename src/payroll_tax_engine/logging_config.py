"""Logging setup for the payroll_tax_engine logger hierarchy."""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any

_LOGGER_PREFIX = "payroll_tax_engine"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured = False
_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    *,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a handler to the package logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler or logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(logging.Formatter(_FORMAT))
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Undo configure_logging. Used by tests."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
