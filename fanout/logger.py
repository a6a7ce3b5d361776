"""
Structured logging setup (structlog over stdlib logging).

All log records go to stderr so that stdout stays reserved for command results.
"""

from __future__ import annotations

import logging
import sys
import uuid

import structlog
from structlog.contextvars import bind_contextvars
from structlog.typing import FilteringBoundLogger


def configure_logging(level: str = "INFO", json: bool = False) -> str:
    """Configure structlog once per process and bind a fresh run id. Returns the run id."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: structlog.typing.Processor
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    run_id = uuid.uuid4().hex
    bind_contextvars(run_id=run_id)
    return run_id


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name)
