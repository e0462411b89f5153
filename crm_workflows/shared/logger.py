import logging
import sys
from typing import Any, Dict

import structlog


def configure_logging(level: int = logging.INFO):
    """
    Configures structured logging for the engine processes.
    Emits one JSON object per event so enrollment traces can be filtered by key.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    return structlog.get_logger(name)


def bind_context(context: Dict[str, Any]):
    """
    Binds additional context to all subsequent log calls in the current context.
    Example: bind_context({"enrollment_id": "enr-123"})
    """
    structlog.contextvars.bind_contextvars(**context)


def clear_context():
    structlog.contextvars.clear_contextvars()


def bound_context(**context: Any):
    """
    Binds context for the duration of a `with` block, restoring what was bound before.
    Example: with bound_context(enrollment_id="enr-123"): ...
    """
    return structlog.contextvars.bound_contextvars(**context)
