"""
Logging configuration for the Financial Inference engine.

Modules obtain their logger with ``get_logger(<short name>)``; everything
hangs off the ``financial_inference`` namespace.  The ``audit`` child logger
receives a mirror of every audit trail entry and can be routed to its own
file so the decision history of a run stays readable on disk.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union


ROOT_LOGGER_NAME = "financial_inference"
AUDIT_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.audit"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
AUDIT_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def _file_handler(
    path: Union[str, Path], level: int, fmt: str
) -> logging.FileHandler:
    handler = logging.FileHandler(str(path), encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    return handler


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    audit_log_file: Optional[Union[str, Path]] = None,
) -> None:
    """Attach handlers to the ``financial_inference`` logger.

    Handlers are installed on the first call only.  Later calls just adjust
    the level, so several pipelines in one process share a single set of
    handlers.

    Parameters
    ----------
    level:
        Minimum severity to emit.
    log_file:
        Optional file receiving the same records as the console.
    audit_log_file:
        Optional file receiving only the audit trail mirror.
    """
    global _configured  # noqa: PLW0603

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    if _configured:
        for handler in root.handlers:
            handler.setLevel(level)
        return

    root.propagate = False

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console)

    if log_file:
        root.addHandler(_file_handler(log_file, level, LOG_FORMAT))

    if audit_log_file:
        # Audit entries are INFO or ERROR; keep them regardless of ``level``.
        audit = logging.getLogger(AUDIT_LOGGER_NAME)
        audit.setLevel(logging.INFO)
        audit.addHandler(_file_handler(audit_log_file, logging.INFO, AUDIT_FORMAT))

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``financial_inference`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
