"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Literal

import structlog

LogFormat = Literal["console", "json"]


def setup_logging(level: str = "INFO", log_format: LogFormat = "console") -> None:
    """Configure structlog on stderr so log lines never mix with the chat on stdout."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer: structlog.typing.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance."""
    return structlog.get_logger(name)


def bind_turn(message_id: str, model: str) -> None:
    """Tag every log line of the current send with its assistant message and model."""
    structlog.contextvars.bind_contextvars(turn_message_id=message_id, model=model)


def clear_turn() -> None:
    structlog.contextvars.unbind_contextvars("turn_message_id", "model")
