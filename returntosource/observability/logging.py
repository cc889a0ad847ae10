"""
Structured Logging Configuration with structlog
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure structlog over standard library logging

    Logs go to stderr so they never interleave with the operator console
    lines written to stdout.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all log messages in current context

    Args:
        **kwargs: Key-value pairs to add to log context
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**kwargs)


def log_requeue_event(
    logger: structlog.stdlib.BoundLogger,
    message_id: str,
    outcome: str,
    duration_ms: float,
    error: str = None,
) -> None:
    """
    Log the result of one requeue attempt

    Args:
        logger: Structlog logger
        message_id: Id the operator asked for
        outcome: RequeueOutcome value
        duration_ms: Time spent on the attempt in milliseconds
        error: Error message if the attempt failed
    """
    log_data = {
        "event": "requeue_failed" if error else "requeue_completed",
        "message_id": message_id,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 2),
    }

    if error:
        log_data["error"] = error
        logger.error(**log_data)
    else:
        logger.info(**log_data)
