"""Structured logging configuration for stasher."""

from __future__ import annotations

import logging
import sys

import litellm
import structlog


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog for the CLI and the daemon.

    Events go to stderr so command output on stdout stays clean. At DEBUG
    every skipped event and store lookup is logged; at INFO only recorded
    snapshots, prunes and failures are.

    Args:
        level: Standard logging level (e.g., logging.DEBUG, logging.INFO).
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    if level > logging.DEBUG:
        litellm.suppress_debug_info = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structlog logger."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
