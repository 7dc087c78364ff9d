"""Structured logging configuration using structlog.

Every line is a JSON object on stderr so it interleaves cleanly with pytest's
own output and survives ``-s``.  Lines emitted while a test runs carry that
test's node id under ``test``.
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger

# Chatty third-party loggers used by the kubernetes client.
_NOISY_LOGGERS = ("kubernetes", "urllib3")


def setup_logging(level: str = "info") -> None:
    """Configure structlog for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Request/response tracing from the API client only at debug.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(log_level if log_level <= logging.DEBUG else logging.WARNING)


def get_logger(component: str, **context: object) -> FilteringBoundLogger:
    """Get a logger bound with a component name and optional extra context."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component, **context))


def bind_test(test_name: str) -> None:
    """Tag every log line emitted in the current context with the running test's name.

    Deletion worker threads run in a copy of the caller's context, so their
    lines are tagged too.
    """
    structlog.contextvars.bind_contextvars(test=test_name)


def unbind_test() -> None:
    structlog.contextvars.unbind_contextvars("test")
