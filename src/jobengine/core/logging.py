"""
Structured logging for the job engine.

Every lifecycle change of an execution is a structlog event. Lines logged
while an execution's worker thread is draining output carry its
``execution_id`` and ``project_key`` automatically, so one deploy can be
followed from enqueue to exit even with many projects running at once.

Examples:
    >>> from jobengine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("execution_started", execution_id="e-1", project_key="web")

    >>> with execution_context("e-1", "web"):
    ...     logger.info("process_spawned", pid=4242)
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


def _plain_values(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render enum members (execution states) by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    *,
    timestamps: bool = True,
) -> None:
    """Configure structlog for the engine and the CLI.

    Log lines go to stderr; stdout is left to streamed job output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON lines, False for the console renderer,
            None to pick JSON when stderr is not a terminal
        timestamps: Prefix events with an ISO-8601 UTC timestamp
    """
    if json_format is None:
        json_format = not sys.stderr.isatty()
    numeric_level = getattr(logging, level.upper())

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _plain_values,
        structlog.dev.set_exc_info,
    ]
    if timestamps:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def execution_context(execution_id: str, project_key: str) -> AbstractContextManager:
    """Attach an execution's identity to every event logged in the block."""
    return structlog.contextvars.bound_contextvars(
        execution_id=execution_id,
        project_key=project_key,
    )


__all__ = [
    "configure_logging",
    "execution_context",
    "get_logger",
]
