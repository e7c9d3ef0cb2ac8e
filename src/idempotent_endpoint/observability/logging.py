"""Structured logging configuration for the idempotent endpoint.

This module provides structured logging using structlog to emit
JSON-formatted logs with contextual information. Events use dotted names
(``admit.proceed``, ``complete.stale_write``, ``backend.error``) so they can
be filtered in log aggregation systems.

The logger includes automatic context binding for:
- Idempotency keys
- Record versions
- Decisions and state transitions
- Backend operations

Examples:
    Configure logging::

        from idempotent_endpoint.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Bind the key for everything logged while handling one request::

        with request_context(key="req-1"):
            logger.info("admit.replay", version=1)

    Output (JSON)::

        {
            "key": "req-1",
            "version": 1,
            "event": "admit.replay",
            "level": "info",
            "timestamp": "2026-10-18T00:00:00.000000Z"
        }
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    This should be called once at application startup.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format

    Examples:
        >>> configure_logging(level="DEBUG", json_output=True)
        >>> configure_logging(level="INFO", json_output=False)
    """
    log_level = getattr(logging, level.upper())

    # uvicorn and boto log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors: list[object] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors.extend(
            [
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ]
        )
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        A structlog logger instance
    """
    return structlog.get_logger(name)


@contextmanager
def request_context(**values: Any) -> Iterator[None]:
    """Bind ``values`` to every log event emitted inside the block.

    Context is stored in contextvars, so concurrent requests handled by
    separate asyncio tasks do not see each other's values.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


logger = get_logger("idempotent_endpoint")
