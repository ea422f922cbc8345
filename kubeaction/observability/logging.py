"""Structured logging configuration using structlog.

Every record carries ``component`` (bound by :func:`get_logger`) and
``service``. Context bound through ``structlog.contextvars`` is merged into
every record.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_SERVICE_NAME = "kubeaction"


def _add_service(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog output to stderr.

    Args:
        level: Minimum level name (debug, info, warning, error).
        fmt:   ``json`` for machine-readable lines, ``console`` for a
               human-readable renderer during local development.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: Any = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _add_service,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]
