"""
Structured logging setup.

Every module logs through ``structlog.get_logger()`` with event-style names
and key/value context; this module decides how those events are rendered.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from config.settings import LoggingConfig


def setup_logging(config: LoggingConfig = None, debug: bool = False) -> None:
    """Configure structured logging with structlog."""
    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)

    # Standard library logging (httpx, redis) goes to the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if debug:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            )
        )
    if config.json:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def bind_worker_context(**context: Any) -> None:
    """Attach worker-wide fields (worker id, queue) to every log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)
